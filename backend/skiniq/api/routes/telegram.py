"""
Telegram Bot 回调路由

Bot API 通过 setWebhook 推送 update。私聊中的文本消息进入客服会话，
/start 命令回复一条带 Mini App 按钮的欢迎消息。

配置了 TELEGRAM_WEBHOOK_SECRET 时，请求头 X-Telegram-Bot-Api-Secret-Token 必须匹配。
Telegram 会重试非 2xx 的响应，所以除鉴权失败外一律返回 200。
"""
from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, Header

from skiniq import crud
from skiniq.api.deps import SessionDep
from skiniq.api.errors import AppError, unauthorized
from skiniq.api.schemas import ApiEnvelope
from skiniq.core.config import settings
from skiniq.core.telegram_auth import TelegramWebAppUser
from skiniq.integrations.telegram_bot import telegram_client
from skiniq.services import support as support_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])

WELCOME_TEXT = "Привет! Я SkinIQ. Пройдите анкету, и мы подберём уход для вашей кожи."


def _send_best_effort(chat_id: int | str, text: str, **kwargs: Any) -> None:
    if not telegram_client.configured:
        logger.warning("telegram reply skipped: TELEGRAM_BOT_TOKEN is not set")
        return
    try:
        telegram_client.send_message(chat_id=chat_id, text=text, **kwargs)
    except AppError as e:
        logger.warning("telegram reply failed: chat=%s error=%s", chat_id, e.message)


@router.post("/webhook", response_model=ApiEnvelope)
def webhook(
    session: SessionDep,
    update: dict[str, Any],
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
) -> ApiEnvelope:
    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if secret:
        provided = x_telegram_bot_api_secret_token or ""
        if not hmac.compare_digest(provided.encode(), secret.encode()):
            logger.warning("telegram webhook rejected: bad secret token")
            raise unauthorized()

    message = update.get("message")
    if not isinstance(message, dict):
        return ApiEnvelope(data={"ok": True, "handled": False})
    chat = message.get("chat") or {}
    sender = message.get("from") or {}
    text = message.get("text")
    if chat.get("type") != "private" or not isinstance(text, str) or not sender.get("id"):
        return ApiEnvelope(data={"ok": True, "handled": False})

    tg_user = TelegramWebAppUser(
        id=int(sender["id"]),
        first_name=sender.get("first_name"),
        last_name=sender.get("last_name"),
        username=sender.get("username"),
        language_code=sender.get("language_code"),
    )
    user = crud.get_or_create_user_from_telegram(session=session, tg_user=tg_user)

    if text.strip().startswith("/start"):
        _send_best_effort(
            chat["id"],
            WELCOME_TEXT,
            web_app_url=settings.MINI_APP_URL,
            web_app_text="Открыть SkinIQ",
        )
        return ApiEnvelope(data={"ok": True, "handled": True})

    result = support_service.record_incoming_message(session=session, user=user, text=text)
    if result.auto_reply:
        _send_best_effort(chat["id"], result.auto_reply)
    return ApiEnvelope(data={"ok": True, "handled": True, "chatId": str(result.chat.id)})
