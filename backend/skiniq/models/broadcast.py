"""
群发消息模型模块
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id
from skiniq.enums import BroadcastStatus, DeliveryStatus

from .base import utc_now


class BroadcastMessage(SQLModel, table=True):
    """
    群发消息模型

    创建时为 draft 或 scheduled；之后只由群发 worker 修改状态和计数。

    字段说明：
    - message: 消息模板，支持 {name}、{link} 占位符
    - scheduled_at: 计划发送时间
    - total_count / sent_count / failed_count: 投递计数
    - buttons: 内联按钮 [{"text": ..., "url": ...}]
    - send_to_all: 发给所有用户；为 False 时只发给有付费权益的用户
    """
    __tablename__ = "broadcast_messages"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    title: str = Field(max_length=255)
    message: str = Field(sa_column=Column(Text, nullable=False))
    status: BroadcastStatus = Field(
        default=BroadcastStatus.draft, sa_column=Column(String(16), index=True, nullable=False)
    )
    scheduled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    image_url: str | None = Field(default=None, max_length=1024)
    buttons: list | None = Field(default=None, sa_column=Column(JSON))
    send_to_all: bool = Field(
        default=True, sa_column=Column(Boolean, nullable=False, default=True)
    )

    total_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    sent_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    failed_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    sent_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class BroadcastLog(SQLModel, table=True):
    """每个接收者一条投递记录"""
    __tablename__ = "broadcast_logs"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    broadcast_id: int = Field(
        sa_column=Column(
            BigInteger,
            ForeignKey("broadcast_messages.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    user_id: int = Field(sa_column=Column(BigInteger, nullable=False))
    telegram_id: str = Field(max_length=32)
    status: DeliveryStatus = Field(sa_column=Column(String(16), nullable=False))
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
