"""
客户端日志模型模块

Mini App 前端上报的日志，供客服排查问题，保留 LOG_RETENTION_DAYS 天。
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id
from skiniq.enums import ClientLogLevel

from .base import utc_now


class ClientLog(SQLModel, table=True):
    __tablename__ = "client_logs"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int | None = Field(default=None, sa_column=Column(BigInteger, index=True, nullable=True))
    level: ClientLogLevel = Field(sa_column=Column(String(8), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    context: dict | None = Field(default=None, sa_column=Column(JSON))
    url: str | None = Field(default=None, max_length=1024)
    user_agent: str | None = Field(default=None, max_length=512)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
