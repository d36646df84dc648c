"""
客服会话服务

会话状态：active（用户来信，待处理）-> in_progress（管理员处理中）-> closed。
用户在已关闭的会话里再次来信时，会话重新打开为 active。

不变式：
- unread >= 0，管理员打开消息列表时在同一个事务里清零；
- 关闭会话时 auto_reply_sent 必须重置为 False，
  保证重新打开后的第一条用户消息会再收到一次自动回复。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlmodel import Session, col, select

from skiniq.api.errors import AppError, not_configured, not_found, validation_failed
from skiniq.core.config import settings
from skiniq.enums import SupportChatStatus
from skiniq.integrations.telegram_bot import telegram_client
from skiniq.models import SupportChat, SupportMessage, User, utc_now

logger = logging.getLogger(__name__)


def get_chat(*, session: Session, chat_id: int) -> SupportChat:
    chat = session.get(SupportChat, chat_id)
    if chat is None:
        raise not_found("Chat not found", code=404301)
    return chat


def parse_status(value: str) -> SupportChatStatus:
    try:
        return SupportChatStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in SupportChatStatus)
        raise validation_failed(f"Invalid status: {value}. Allowed: {allowed}", code=400301)


def set_status(*, session: Session, chat_id: int, status: str) -> SupportChat:
    new_status = parse_status(status)
    chat = get_chat(session=session, chat_id=chat_id)
    chat.status = new_status
    if new_status == SupportChatStatus.closed:
        chat.auto_reply_sent = False
    chat.updated_at = utc_now()
    session.add(chat)
    session.commit()
    session.refresh(chat)
    logger.info("support chat %s status -> %s", chat_id, new_status.value)
    return chat


def close_chat(*, session: Session, chat_id: int) -> SupportChat:
    return set_status(session=session, chat_id=chat_id, status=SupportChatStatus.closed.value)


def list_messages(
    *, session: Session, chat_id: int, limit: int | None = None
) -> list[SupportMessage]:
    """Most recent `limit` messages, oldest first; marks the chat as read.

    `limit` can only narrow the window, never widen it past SUPPORT_MESSAGES_LIMIT.
    """
    limit = min(limit or settings.SUPPORT_MESSAGES_LIMIT, settings.SUPPORT_MESSAGES_LIMIT)
    chat = get_chat(session=session, chat_id=chat_id)
    rows = session.exec(
        select(SupportMessage)
        .where(SupportMessage.chat_id == chat_id)
        .order_by(col(SupportMessage.created_at).desc(), col(SupportMessage.id).desc())
        .limit(limit)
    ).all()
    messages = list(reversed(rows))

    chat.unread = 0
    session.add(chat)
    session.commit()
    return messages


def list_open_chats(*, session: Session) -> list[tuple[SupportChat, User]]:
    stmt = (
        select(SupportChat, User)
        .join(User, col(User.id) == SupportChat.user_id)
        .where(SupportChat.status != SupportChatStatus.closed.value)
        .order_by(col(SupportChat.updated_at).desc())
    )
    return [(chat, user) for chat, user in session.exec(stmt).all()]


@dataclass(frozen=True)
class AdminReply:
    message: SupportMessage
    delivered: bool


def send_admin_message(*, session: Session, chat_id: int, text: str) -> AdminReply:
    """
    保存管理员回复并通过 Telegram 投递

    投递是尽力而为：发送失败不回滚已保存的消息，只记录日志并返回 delivered=False。
    """
    if not telegram_client.configured:
        raise not_configured("TELEGRAM_BOT_TOKEN")
    text = text.strip()
    if not text:
        raise validation_failed("text must not be empty", code=400302)

    chat = get_chat(session=session, chat_id=chat_id)
    user = session.get(User, chat.user_id)
    now = utc_now()

    message = SupportMessage(chat_id=chat.id, text=text, is_admin=True, created_at=now)
    chat.last_message = text
    chat.updated_at = now
    if chat.status == SupportChatStatus.active:
        chat.status = SupportChatStatus.in_progress
    session.add(message)
    session.add(chat)
    session.commit()
    session.refresh(message)

    delivered = False
    if user is not None:
        try:
            telegram_client.send_message(chat_id=user.telegram_id, text=text)
            delivered = True
        except AppError as e:
            logger.warning("support reply not delivered: chat=%s error=%s", chat_id, e.message)
    return AdminReply(message=message, delivered=delivered)


@dataclass(frozen=True)
class IncomingResult:
    chat: SupportChat
    auto_reply: str | None


def record_incoming_message(*, session: Session, user: User, text: str) -> IncomingResult:
    """
    记录一条用户来信

    返回的 auto_reply 不为空时，调用方需要把它发给用户（每轮会话只发一次）。
    """
    now = utc_now()
    chat = session.exec(
        select(SupportChat)
        .where(SupportChat.user_id == user.id)
        .order_by(col(SupportChat.created_at).desc())
    ).first()
    if chat is None:
        chat = SupportChat(user_id=user.id, status=SupportChatStatus.active, created_at=now)
    elif chat.status == SupportChatStatus.closed:
        chat.status = SupportChatStatus.active

    chat.unread = (chat.unread or 0) + 1
    chat.last_message = text
    chat.updated_at = now

    auto_reply: str | None = None
    if not chat.auto_reply_sent:
        chat.auto_reply_sent = True
        auto_reply = settings.SUPPORT_AUTO_REPLY_TEXT

    session.add(chat)
    session.flush()
    session.add(SupportMessage(chat_id=chat.id, text=text, is_admin=False, created_at=now))
    session.commit()
    session.refresh(chat)
    return IncomingResult(chat=chat, auto_reply=auto_reply)
