"""
支付路由模块

- POST /payments/create: Mini App 用户创建支付（YooKassa，未配置时为模拟支付）
- POST /payments/webhook: 支付平台回调，唯一能把支付置为 completed 的入口
- POST /payments/test-webhook: 仅本地环境，模拟支付成功
- GET  /payments/status: 已废弃，兼容旧前端
"""
from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, Body, Header, Query, Request, Response
from pydantic import ValidationError
from sqlmodel import Session

from skiniq.api.deps import CurrentUser, SessionDep
from skiniq.api.errors import not_configured, not_found, unauthorized, validation_failed
from skiniq.api.schemas import (
    ApiEnvelope,
    PaymentCreateData,
    PaymentCreateRequest,
    PaymentStatusData,
    PaymentWebhookPayload,
    SimulatedWebhookRequest,
    WebhookResultData,
)
from skiniq.core.config import settings
from skiniq.enums import PaymentStatus
from skiniq.models import Payment, User, as_utc
from skiniq.services import payments as payment_service
from skiniq.services.entitlements import DEFAULT_ENTITLEMENT_CODE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _origin(request: Request) -> str:
    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")
    return settings.MINI_APP_URL.rstrip("/")


@router.post("/create", response_model=ApiEnvelope)
def create_payment(
    session: SessionDep, current_user: CurrentUser, body: PaymentCreateRequest, request: Request
) -> ApiEnvelope:
    """
    创建支付

    同一个 idempotencyKey 重复请求时返回已有的支付；
    如果该支付已经完成，同时返回 hasAccess。

    请求路径: POST /api/v1/payments/create
    """
    result = payment_service.create_payment(
        session=session,
        user=current_user,
        product_code=body.product_code,
        origin=_origin(request),
        idempotency_key=body.idempotency_key,
        customer_phone=body.customer_phone,
    )
    payment = result.payment
    return ApiEnvelope(
        data=PaymentCreateData(
            payment_id=str(payment.id),
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            payment_url=result.payment_url,
            has_access=result.has_access,
        )
    )


def _apply_provider_status(
    session: Session, payment: Payment, provider_status: str | None, raw: dict[str, Any]
) -> WebhookResultData:
    new_status = payment_service.map_provider_status(provider_status)
    if new_status == PaymentStatus.completed:
        result = payment_service.complete_payment(
            session=session, payment_id=payment.id, provider_payload=raw
        )
        if result.processed:
            user = session.get(User, payment.user_id)
            payment_service.notify_payment_succeeded(telegram_id=user.telegram_id if user else None)
    elif new_status == PaymentStatus.failed:
        result = payment_service.fail_payment(
            session=session, payment_id=payment.id, provider_payload=raw
        )
    else:
        return WebhookResultData(processed=False, status=PaymentStatus.pending, reason="pending")
    return WebhookResultData(processed=result.processed, status=result.status, reason=result.reason)


def _secret_matches(provided: str | None, secret: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), secret.encode())


@router.post("/webhook", response_model=ApiEnvelope)
def webhook(
    session: SessionDep,
    payload: Any = Body(default=None),
    x_webhook_secret: str | None = Header(default=None),
    secret_param: str | None = Query(default=None, alias="secret"),
) -> ApiEnvelope:
    """
    支付平台回调

    PAYMENTS_WEBHOOK_SECRET 通过请求头 X-Webhook-Secret 或 URL 参数 ?secret= 传入
    （YooKassa 不支持自定义请求头，只能把密钥写进通知 URL）。
    请求体不是 JSON 对象时返回 400211。
    找不到对应支付时返回 200（processed=false），避免支付平台无限重试。

    请求路径: POST /api/v1/payments/webhook
    """
    secret = settings.PAYMENTS_WEBHOOK_SECRET
    if not secret:
        raise not_configured("PAYMENTS_WEBHOOK_SECRET")
    if not (_secret_matches(x_webhook_secret, secret) or _secret_matches(secret_param, secret)):
        logger.warning("payment webhook rejected: bad or missing secret")
        raise unauthorized()

    if not isinstance(payload, dict):
        raise validation_failed("Invalid webhook payload", code=400211)
    try:
        body = PaymentWebhookPayload.model_validate(payload)
    except ValidationError:
        raise validation_failed("Invalid webhook payload", code=400211)

    provider_payment_id = body.provider_payment_id
    if not provider_payment_id:
        raise validation_failed("Missing paymentId", code=400212)

    payment = payment_service.get_payment_by_provider_id(
        session=session, provider_payment_id=provider_payment_id
    )
    if payment is None:
        logger.warning("payment webhook for unknown payment %s", provider_payment_id)
        return ApiEnvelope(data=WebhookResultData(processed=False, reason="unknown_payment"))

    amount = body.provider_amount
    if amount is not None and amount.value is not None:
        received = payment_service.parse_amount_minor(amount.value)
        if received != payment.amount:
            logger.error(
                "payment webhook amount mismatch: payment=%s expected=%s received=%s",
                payment.id,
                payment.amount,
                amount.value,
            )
            raise validation_failed("Amount mismatch", code=400213)

    result = _apply_provider_status(session, payment, body.provider_status, payload)
    logger.info(
        "payment webhook: payment=%s status=%s processed=%s",
        payment.id,
        body.provider_status,
        result.processed,
    )
    return ApiEnvelope(data=result)


@router.post("/test-webhook", response_model=ApiEnvelope, include_in_schema=False)
def simulate_webhook(
    session: SessionDep, current_user: CurrentUser, body: SimulatedWebhookRequest
) -> ApiEnvelope:
    """
    模拟支付平台回调（仅本地环境）

    走与真实回调相同的状态迁移和权益授予逻辑。
    """
    if settings.ENVIRONMENT != "local":
        raise not_found("Not found")
    payment = session.get(Payment, body.payment_id)
    if payment is None or payment.user_id != current_user.id:
        raise not_found("Payment not found", code=404201)
    raw = {"id": payment.provider_payment_id, "status": body.status, "simulated": True}
    return ApiEnvelope(data=_apply_provider_status(session, payment, body.status, raw))


@router.get("/status", response_model=ApiEnvelope, deprecated=True)
def payment_status(
    session: SessionDep, current_user: CurrentUser, response: Response
) -> ApiEnvelope:
    """
    支付状态（已废弃）

    只读权益表，不再读取用户标签。请改用 GET /entitlements/check?code=paid_access。
    """
    response.headers["Deprecation"] = "true"
    response.headers["Link"] = '</api/v1/entitlements/check>; rel="successor-version"'
    rows = payment_service.active_entitlements(
        session=session, user_id=current_user.id, code=DEFAULT_ENTITLEMENT_CODE
    )
    valid_until = None
    if rows and all(r.valid_until is not None for r in rows):
        valid_until = max(as_utc(r.valid_until) for r in rows if r.valid_until is not None)
    return ApiEnvelope(data=PaymentStatusData(paid=bool(rows), valid_until=valid_until))
