"""
客服会话模型模块
"""
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlmodel import Field, SQLModel

from skiniq.core.snowflake import generate_id
from skiniq.enums import SupportChatStatus

from .base import utc_now


class SupportChat(SQLModel, table=True):
    """
    客服会话模型

    字段说明：
    - status: active / in_progress / closed
    - unread: 管理员未读的用户消息数（>= 0），管理员打开消息列表时清零
    - auto_reply_sent: 本轮会话是否已发送自动回复；关闭会话时必须重置为 False，
      这样重新打开后的第一条用户消息会再触发一次自动回复
    - last_message: 最后一条消息的文本（列表页展示用）
    """
    __tablename__ = "support_chats"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    status: SupportChatStatus = Field(
        default=SupportChatStatus.active, sa_column=Column(String(16), nullable=False)
    )
    unread: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    auto_reply_sent: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, default=False)
    )
    last_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class SupportMessage(SQLModel, table=True):
    """
    客服消息模型

    - is_admin: True 为管理员回复，False 为用户来信
    """
    __tablename__ = "support_messages"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    chat_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("support_chats.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    text: str = Field(sa_column=Column(Text, nullable=False))
    is_admin: bool = Field(default=False)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
