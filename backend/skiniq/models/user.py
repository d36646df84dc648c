"""
用户模型模块

Mini App 用户，以 Telegram 用户 ID 作为唯一标识。
付费状态不保存在用户上，只以 entitlements 表为准。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键，Snowflake ID
    - telegram_id: Telegram 用户 ID（唯一）
    - first_name / last_name / username / language_code: 来自 Telegram 的资料
    - last_active_at: 最近一次带 initData 的请求时间
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    telegram_id: str = Field(
        sa_column=Column(String(32), unique=True, index=True, nullable=False),
    )
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)
    username: str | None = Field(default=None, max_length=64)
    language_code: str | None = Field(default=None, max_length=16)

    last_active_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
