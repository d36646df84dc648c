"""
Telegram Bot API 集成模块

封装管理后台需要的发消息接口：
- sendMessage: 文本消息（可带内联按钮）
- sendPhoto: 图片 + 说明文字（群发带图时使用）

调用失败统一抛出 AppError(502)；是否把失败当作致命错误由调用方决定
（支付通知、客服回复、群发都把投递视为尽力而为）。
"""
from __future__ import annotations

from typing import Any

import httpx

from skiniq.api.errors import AppError, not_configured
from skiniq.core.config import settings


class TelegramBotClient:
    """
    Telegram Bot API 客户端

    每次调用时读取配置，便于测试中替换 TELEGRAM_BOT_TOKEN。
    """

    def __init__(self, *, timeout: float = 15.0) -> None:
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(settings.TELEGRAM_BOT_TOKEN)

    def _url(self, method: str) -> str:
        token = settings.TELEGRAM_BOT_TOKEN
        if not token:
            raise not_configured("TELEGRAM_BOT_TOKEN")
        base = settings.TELEGRAM_API_BASE_URL.rstrip("/")
        return f"{base}/bot{token}/{method}"

    @staticmethod
    def _reply_markup(
        buttons: list[dict[str, str]] | None, web_app_url: str | None, web_app_text: str | None
    ) -> dict[str, Any] | None:
        if web_app_url:
            return {"inline_keyboard": [[{"text": web_app_text or "Open", "web_app": {"url": web_app_url}}]]}
        if buttons:
            return {"inline_keyboard": [[{"text": b["text"], "url": b["url"]} for b in buttons]]}
        return None

    def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._url(method)
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(url, json=payload)
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AppError(code=502401, message=f"Telegram {method} error: {e}", status_code=502)

        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise AppError(
                code=502402,
                message=f"Telegram {method} failed: {description or 'Unknown error'}",
                status_code=502,
            )
        return data

    def send_message(
        self,
        *,
        chat_id: str | int,
        text: str,
        buttons: list[dict[str, str]] | None = None,
        web_app_url: str | None = None,
        web_app_text: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        markup = self._reply_markup(buttons, web_app_url, web_app_text)
        if markup:
            payload["reply_markup"] = markup
        return self._call("sendMessage", payload)

    def send_photo(
        self,
        *,
        chat_id: str | int,
        photo_url: str,
        caption: str,
        buttons: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "photo": photo_url,
            "caption": caption,
            "parse_mode": "HTML",
        }
        markup = self._reply_markup(buttons, None, None)
        if markup:
            payload["reply_markup"] = markup
        return self._call("sendPhoto", payload)


# 全局客户端实例
telegram_client = TelegramBotClient()
