"""
管理员账号模型模块
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id

from .base import utc_now


class AdminAccount(SQLModel, table=True):
    """
    管理员白名单

    只有白名单中的邮箱可以登录管理后台。
    password_hash 为空表示尚未设置访问码，第一次登录时由管理员自己设置。
    """
    __tablename__ = "admin_accounts"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    email: str = Field(sa_column=Column(String(255), unique=True, index=True, nullable=False))
    password_hash: str | None = Field(default=None, max_length=255)
    role: str = Field(default="admin", max_length=32)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
