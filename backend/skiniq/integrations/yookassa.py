"""
YooKassa 支付集成模块

文档: https://yookassa.ru/developers/api#create_payment

创建支付时使用 capture=true（支付成功后直接进入 succeeded，无需二次确认），
并附带 54-ФЗ 小票（receipt），小票需要买家的 email 或手机号。
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import httpx

from skiniq.api.errors import AppError, not_configured
from skiniq.core.config import settings

# 小票上的商品名称
PRODUCT_LABELS: dict[str, str] = {
    "plan_access": "Доступ к плану ухода",
    "retake_topic": "Перепрохождение темы",
    "retake_full": "Полное перепрохождение анкеты",
    "subscription_month": "Подписка на 1 месяц",
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class YooKassaPayment:
    id: str
    status: str
    confirmation_url: str | None
    raw: dict[str, Any]


def format_amount(amount_minor: int) -> str:
    """Minor units to a decimal string, e.g. 19900 -> 199.00."""
    return f"{amount_minor // 100}.{amount_minor % 100:02d}"


def build_receipt(
    *,
    amount_minor: int,
    currency: str,
    product_code: str,
    customer_email: str | None = None,
    customer_phone: str | None = None,
) -> dict[str, Any]:
    customer: dict[str, str] = {}
    if customer_email and _EMAIL_RE.match(customer_email):
        customer["email"] = customer_email
    if customer_phone and customer_phone.strip():
        customer["phone"] = re.sub(r"^\+?7", "7", customer_phone.strip())
    if not customer:
        customer["email"] = settings.YOOKASSA_RECEIPT_EMAIL

    return {
        "customer": customer,
        "items": [
            {
                "description": PRODUCT_LABELS.get(product_code, product_code),
                "quantity": "1.00",
                "amount": {"value": format_amount(amount_minor), "currency": currency},
                "vat_code": 1,
                "payment_subject": "service",
                "payment_mode": "full_payment",
            }
        ],
        "tax_system_code": settings.YOOKASSA_TAX_SYSTEM_CODE,
    }


class YooKassaClient:
    def __init__(self, *, timeout: float = 20.0) -> None:
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(settings.YOOKASSA_SHOP_ID and settings.YOOKASSA_SECRET_KEY)

    def create_payment(
        self,
        *,
        amount_minor: int,
        currency: str,
        description: str,
        idempotency_key: str,
        return_url: str,
        receipt: dict[str, Any],
        metadata: dict[str, str] | None = None,
    ) -> YooKassaPayment:
        if not self.configured:
            raise not_configured("YOOKASSA_SHOP_ID/YOOKASSA_SECRET_KEY")

        body = {
            "amount": {"value": format_amount(amount_minor), "currency": currency},
            "capture": True,
            "confirmation": {"type": "redirect", "return_url": return_url},
            "description": description,
            "metadata": metadata or {},
            "receipt": receipt,
        }
        try:
            with httpx.Client(
                timeout=self._timeout,
                auth=(settings.YOOKASSA_SHOP_ID or "", settings.YOOKASSA_SECRET_KEY or ""),
            ) as client:
                r = client.post(
                    settings.YOOKASSA_API_URL,
                    json=body,
                    headers={"Idempotence-Key": idempotency_key},
                )
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AppError(code=502501, message=f"YooKassa request failed: {e}", status_code=502)

        if r.status_code >= 400 or not isinstance(data, dict) or not data.get("id"):
            detail = data.get("description") or data.get("code") if isinstance(data, dict) else None
            raise AppError(
                code=502502,
                message=f"YooKassa error: {detail or f'HTTP {r.status_code}'}",
                status_code=502,
            )

        confirmation = data.get("confirmation") or {}
        return YooKassaPayment(
            id=str(data["id"]),
            status=str(data.get("status") or "pending"),
            confirmation_url=confirmation.get("confirmation_url"),
            raw=data,
        )


# 全局客户端实例
yookassa_client = YooKassaClient()
