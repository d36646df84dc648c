"""
客服路由模块（管理后台）

所有接口都需要管理员登录。
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from skiniq.api.deps import CurrentAdmin, SessionDep
from skiniq.api.schemas import (
    ApiEnvelope,
    ChatIdRequest,
    ChatStatusRequest,
    SupportChatData,
    SupportChatsData,
    SupportMessageData,
    SupportMessagesData,
    SupportSendData,
    SupportSendRequest,
)
from skiniq.models import SupportChat, SupportMessage, User, as_utc
from skiniq.services import support as support_service

router = APIRouter(prefix="/admin/support", tags=["admin-support"])


def _to_chat_data(chat: SupportChat, user: User) -> SupportChatData:
    name = " ".join(p for p in (user.first_name, user.last_name) if p) or None
    return SupportChatData(
        id=str(chat.id),
        user_id=str(user.id),
        telegram_id=user.telegram_id,
        name=name,
        username=user.username,
        status=chat.status,
        unread=chat.unread,
        last_message=chat.last_message,
        updated_at=as_utc(chat.updated_at),
    )


def _to_message_data(message: SupportMessage) -> SupportMessageData:
    return SupportMessageData(
        id=str(message.id),
        text=message.text,
        is_admin=message.is_admin,
        created_at=as_utc(message.created_at),
    )


@router.get("/chats", response_model=ApiEnvelope)
def list_chats(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    """未关闭的会话，最近更新的在前"""
    rows = support_service.list_open_chats(session=session)
    return ApiEnvelope(data=SupportChatsData(chats=[_to_chat_data(c, u) for c, u in rows]))


@router.get("/messages", response_model=ApiEnvelope)
def list_messages(
    session: SessionDep,
    _: CurrentAdmin,
    chat_id: int = Query(alias="chatId"),
) -> ApiEnvelope:
    """
    会话消息（按时间正序，最多 SUPPORT_MESSAGES_LIMIT 条），同时把会话的未读数清零

    请求路径: GET /api/v1/admin/support/messages?chatId=...
    """
    messages = support_service.list_messages(session=session, chat_id=chat_id)
    return ApiEnvelope(data=SupportMessagesData(messages=[_to_message_data(m) for m in messages]))


@router.put("/status", response_model=ApiEnvelope)
def set_status(session: SessionDep, _: CurrentAdmin, body: ChatStatusRequest) -> ApiEnvelope:
    chat = support_service.set_status(session=session, chat_id=body.chat_id, status=body.status)
    return ApiEnvelope(data={"chatId": str(chat.id), "status": chat.status})


@router.post("/close", response_model=ApiEnvelope)
def close_chat(session: SessionDep, _: CurrentAdmin, body: ChatIdRequest) -> ApiEnvelope:
    chat = support_service.close_chat(session=session, chat_id=body.chat_id)
    return ApiEnvelope(data={"chatId": str(chat.id), "status": chat.status})


@router.post("/send", response_model=ApiEnvelope)
def send_message(session: SessionDep, _: CurrentAdmin, body: SupportSendRequest) -> ApiEnvelope:
    """
    管理员回复

    消息先入库，再通过 Telegram 尽力投递；投递失败时 delivered=false。
    """
    reply = support_service.send_admin_message(session=session, chat_id=body.chat_id, text=body.text)
    return ApiEnvelope(
        data=SupportSendData(message=_to_message_data(reply.message), delivered=reply.delivered)
    )
