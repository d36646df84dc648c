"""
Telegram WebApp initData 校验

文档: https://core.telegram.org/bots/webapps#validating-data-received-via-the-mini-app

secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)
hash       = hex(HMAC_SHA256(key=secret_key, msg=data_check_string))

data_check_string 为除 hash 外所有字段按 key 排序后以 "\n" 连接的 "key=value"。
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl


class InitDataError(ValueError):
    pass


@dataclass(frozen=True)
class TelegramWebAppUser:
    id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """Computes the hash Telegram would attach to `fields`."""
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))
    return hmac.new(_secret_key(bot_token), data_check_string.encode(), hashlib.sha256).hexdigest()


def validate_init_data(
    init_data: str,
    bot_token: str,
    *,
    max_age_seconds: int | None = None,
    now: float | None = None,
) -> TelegramWebAppUser:
    if not init_data or not init_data.strip():
        raise InitDataError("No initData provided")

    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    received_hash = fields.pop("hash", None)
    if not received_hash:
        raise InitDataError("initData has no hash")

    expected = sign_init_data(fields, bot_token)
    if not hmac.compare_digest(expected, received_hash):
        raise InitDataError("initData hash mismatch")

    if max_age_seconds is not None:
        try:
            auth_date = int(fields.get("auth_date", ""))
        except ValueError:
            raise InitDataError("initData has no valid auth_date")
        current = time.time() if now is None else now
        if current - auth_date > max_age_seconds:
            raise InitDataError("initData expired")

    try:
        raw_user: dict[str, Any] = json.loads(fields.get("user") or "")
        user_id = int(raw_user["id"])
    except (ValueError, KeyError, TypeError):
        raise InitDataError("initData has no valid user")

    return TelegramWebAppUser(
        id=user_id,
        first_name=raw_user.get("first_name"),
        last_name=raw_user.get("last_name"),
        username=raw_user.get("username"),
        language_code=raw_user.get("language_code"),
    )
