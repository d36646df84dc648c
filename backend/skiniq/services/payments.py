"""
支付生命周期

状态机：pending -> completed，pending -> failed；终态不可回退。

pending -> completed 只由经过鉴权的支付回调触发，并且必须幂等：
- 状态迁移是一条带 `status = 'pending'` 条件的 UPDATE（比较并交换），
  只有真正完成迁移的那次调用才会插入 Entitlement；
- Entitlement.granted_from_payment_id 唯一约束兜底，
  不同进程上的并发回调最多只能插入一条。

访问检查只读 entitlements 表，不读用户上的任何“已付费”标记。
"""
from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from skiniq.api.errors import AppError, not_found, validation_failed
from skiniq.core.config import settings
from skiniq.enums import PaymentStatus
from skiniq.integrations.telegram_bot import telegram_client
from skiniq.integrations.yookassa import build_receipt, format_amount, yookassa_client
from skiniq.models import Entitlement, Payment, User, utc_now
from skiniq.services.entitlements import calculate_valid_until, entitlement_code_for_product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Product:
    amount: int  # 最小货币单位
    currency: str


PRODUCTS: dict[str, Product] = {
    "plan_access": Product(amount=19900, currency="RUB"),
    "retake_topic": Product(amount=4900, currency="RUB"),
    "retake_full": Product(amount=9900, currency="RUB"),
    "subscription_month": Product(amount=49900, currency="RUB"),
}

# YooKassa 状态 + 其他渠道的常见别名
_PROVIDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.completed,
    "paid": PaymentStatus.completed,
    "completed": PaymentStatus.completed,
    "canceled": PaymentStatus.failed,
    "cancelled": PaymentStatus.failed,
    "failed": PaymentStatus.failed,
    "declined": PaymentStatus.failed,
}


def map_provider_status(provider_status: str | None) -> PaymentStatus:
    """Anything unrecognised (pending, waiting_for_capture, ...) maps to pending."""
    if not provider_status:
        return PaymentStatus.pending
    return _PROVIDER_STATUS_MAP.get(provider_status.strip().lower(), PaymentStatus.pending)


def parse_amount_minor(value: Any) -> int | None:
    """"199.00" -> 19900; None when the value is not a number."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class TransitionResult:
    processed: bool
    status: PaymentStatus
    entitlement: Entitlement | None = None
    reason: str | None = None


def get_payment_by_provider_id(*, session: Session, provider_payment_id: str) -> Payment | None:
    return session.exec(
        select(Payment).where(Payment.provider_payment_id == provider_payment_id)
    ).first()


def _transition(
    *,
    session: Session,
    payment_id: int,
    to_status: PaymentStatus,
    now: datetime,
    provider_payload: dict[str, Any] | None,
) -> bool:
    values: dict[str, Any] = {"status": to_status.value, "updated_at": now}
    if provider_payload is not None:
        values["provider_payload"] = provider_payload
    result = session.exec(  # type: ignore[call-overload]
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PaymentStatus.pending.value)
        .values(**values)
    )
    return result.rowcount == 1


def _current_status(session: Session, payment_id: int) -> PaymentStatus:
    payment = session.get(Payment, payment_id, populate_existing=True)
    if payment is None:
        raise not_found("Payment not found", code=404201)
    return PaymentStatus(payment.status)


def complete_payment(
    *,
    session: Session,
    payment_id: int,
    now: datetime | None = None,
    provider_payload: dict[str, Any] | None = None,
) -> TransitionResult:
    """
    pending -> completed, granting exactly one Entitlement.

    Replaying the call for a payment that is already completed (or failed)
    is a no-op success with processed=False.
    """
    now = now or utc_now()
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise not_found("Payment not found", code=404201)
    user_id = payment.user_id
    product_code = payment.product_code

    if not _transition(
        session=session,
        payment_id=payment_id,
        to_status=PaymentStatus.completed,
        now=now,
        provider_payload=provider_payload,
    ):
        session.rollback()
        status = _current_status(session, payment_id)
        logger.info(
            "payment %s already %s, skipping transition (idempotency)", payment_id, status.value
        )
        return TransitionResult(processed=False, status=status, reason=f"already_{status.value}")

    entitlement = Entitlement(
        user_id=user_id,
        code=entitlement_code_for_product(product_code),
        valid_until=calculate_valid_until(product_code, now),
        granted_from_payment_id=payment_id,
    )
    session.add(entitlement)
    try:
        session.commit()
    except IntegrityError:
        # 这笔支付的权益已经存在（另一个进程插入的），只补上状态迁移
        session.rollback()
        _transition(
            session=session,
            payment_id=payment_id,
            to_status=PaymentStatus.completed,
            now=now,
            provider_payload=provider_payload,
        )
        session.commit()
        logger.warning("entitlement for payment %s already exists, not inserting again", payment_id)
        return TransitionResult(
            processed=False, status=PaymentStatus.completed, reason="entitlement_exists"
        )

    session.refresh(entitlement)
    logger.info(
        "entitlement granted: user=%s payment=%s code=%s valid_until=%s",
        user_id,
        payment_id,
        entitlement.code,
        now.isoformat() if entitlement.valid_until is None else entitlement.valid_until.isoformat(),
    )
    return TransitionResult(processed=True, status=PaymentStatus.completed, entitlement=entitlement)


def fail_payment(
    *,
    session: Session,
    payment_id: int,
    now: datetime | None = None,
    provider_payload: dict[str, Any] | None = None,
) -> TransitionResult:
    now = now or utc_now()
    if session.get(Payment, payment_id) is None:
        raise not_found("Payment not found", code=404201)

    if not _transition(
        session=session,
        payment_id=payment_id,
        to_status=PaymentStatus.failed,
        now=now,
        provider_payload=provider_payload,
    ):
        session.rollback()
        status = _current_status(session, payment_id)
        return TransitionResult(processed=False, status=status, reason=f"already_{status.value}")

    session.commit()
    logger.info("payment %s failed", payment_id)
    return TransitionResult(processed=True, status=PaymentStatus.failed)


def active_entitlements(
    *, session: Session, user_id: int, now: datetime | None = None, code: str | None = None
) -> list[Entitlement]:
    now = now or utc_now()
    stmt = select(Entitlement).where(
        Entitlement.user_id == user_id,
        or_(Entitlement.valid_until.is_(None), Entitlement.valid_until > now),  # type: ignore[union-attr,operator]
    )
    if code is not None:
        stmt = stmt.where(Entitlement.code == code)
    return list(session.exec(stmt.order_by(Entitlement.created_at.desc())).all())  # type: ignore[attr-defined]


def has_access(*, session: Session, user_id: int, code: str, now: datetime | None = None) -> bool:
    return bool(active_entitlements(session=session, user_id=user_id, now=now, code=code))


@dataclass(frozen=True)
class CheckoutResult:
    payment: Payment
    payment_url: str | None
    has_access: bool | None = None


def _existing_checkout(session: Session, user: User, payment: Payment) -> CheckoutResult:
    if payment.status == PaymentStatus.completed:
        code = entitlement_code_for_product(payment.product_code)
        return CheckoutResult(
            payment=payment,
            payment_url=None,
            has_access=has_access(session=session, user_id=user.id, code=code),
        )
    payload = payment.provider_payload or {}
    confirmation = payload.get("confirmation") if isinstance(payload, dict) else None
    url = confirmation.get("confirmation_url") if isinstance(confirmation, dict) else None
    return CheckoutResult(payment=payment, payment_url=url)


def _attach_provider_payment(
    *,
    session: Session,
    user: User,
    payment: Payment,
    origin: str,
    customer_phone: str | None,
    use_provider: bool,
) -> CheckoutResult:
    """
    在支付平台创建支付，并把平台返回的 id / 跳转链接写回本地支付记录

    平台调用使用支付记录自己的幂等键，重试不会在平台侧重复创建。
    """
    product_code = payment.product_code
    metadata = {"paymentId": str(payment.id), "userId": str(user.id)}
    description = f"Оплата {product_code}"
    if use_provider:
        try:
            created = yookassa_client.create_payment(
                amount_minor=payment.amount,
                currency=payment.currency,
                description=description,
                idempotency_key=payment.idempotency_key,
                return_url=f"{origin}/payments/return?success=1",
                receipt=build_receipt(
                    amount_minor=payment.amount,
                    currency=payment.currency,
                    product_code=product_code,
                    customer_phone=customer_phone,
                ),
                metadata=metadata,
            )
        except AppError as e:
            logger.error("YooKassa create failed: payment=%s error=%s", payment.id, e.message)
            raise AppError(
                code=502201,
                message="Не удалось создать платёж. Попробуйте позже.",
                status_code=502,
            )
        provider_payment_id = created.id
        payment_url = created.confirmation_url
        provider_payload: dict[str, Any] = created.raw
    else:
        provider_payment_id = str(uuid.uuid4())
        payment_url = f"{origin}/payments/test?payment_id={provider_payment_id}"
        provider_payload = {
            "id": provider_payment_id,
            "status": "pending",
            "amount": {"value": format_amount(payment.amount), "currency": payment.currency},
            "confirmation": {"type": "redirect", "confirmation_url": payment_url},
            "description": description,
            "metadata": metadata,
        }

    payment.provider_payment_id = provider_payment_id
    payment.provider_payload = provider_payload
    payment.updated_at = utc_now()
    session.add(payment)
    session.commit()
    session.refresh(payment)

    logger.info(
        "payment created: user=%s payment=%s product=%s real_provider=%s",
        user.id,
        payment.id,
        product_code,
        use_provider,
    )
    return CheckoutResult(payment=payment, payment_url=payment_url)


def create_payment(
    *,
    session: Session,
    user: User,
    product_code: str,
    origin: str,
    idempotency_key: str | None = None,
    customer_phone: str | None = None,
) -> CheckoutResult:
    """
    创建支付（幂等）

    同一个幂等键再次请求时返回已有支付；如果上一次在支付平台创建失败
    （本地记录仍是 pending 且没有 provider_payment_id），则用同一个幂等键重新创建。
    """
    product = PRODUCTS.get(product_code)
    if product is None:
        raise validation_failed(f"Unknown productCode: {product_code}", code=400201)

    use_provider = yookassa_client.configured
    if settings.ENVIRONMENT == "production" and not use_provider:
        raise AppError(
            code=501201,
            message="Payments are not configured in production (set YOOKASSA_SHOP_ID and YOOKASSA_SECRET_KEY)",
            status_code=501,
        )

    key = idempotency_key or secrets.token_hex(16)
    existing = session.exec(select(Payment).where(Payment.idempotency_key == key)).first()
    if existing is not None:
        if existing.user_id != user.id:
            raise validation_failed("idempotencyKey is already in use", code=400202)
        if existing.status == PaymentStatus.pending and existing.provider_payment_id is None:
            logger.info("retrying provider creation for payment %s", existing.id)
            return _attach_provider_payment(
                session=session,
                user=user,
                payment=existing,
                origin=origin,
                customer_phone=customer_phone,
                use_provider=use_provider,
            )
        logger.info("payment %s already exists for idempotency key", existing.id)
        return _existing_checkout(session, user, existing)

    payment = Payment(
        user_id=user.id,
        product_code=product_code,
        amount=product.amount,
        currency=product.currency,
        provider="yookassa",
        status=PaymentStatus.pending,
        idempotency_key=key,
    )
    session.add(payment)
    try:
        session.commit()
    except IntegrityError:
        # 同一幂等键的并发请求
        session.rollback()
        existing = session.exec(select(Payment).where(Payment.idempotency_key == key)).one()
        return _existing_checkout(session, user, existing)
    session.refresh(payment)

    return _attach_provider_payment(
        session=session,
        user=user,
        payment=payment,
        origin=origin,
        customer_phone=customer_phone,
        use_provider=use_provider,
    )


def notify_payment_succeeded(*, telegram_id: str | None) -> None:
    """Best-effort Telegram message pointing the user back to their plan."""
    if not telegram_id or not telegram_client.configured:
        return
    try:
        telegram_client.send_message(
            chat_id=telegram_id,
            text="✅ Оплата прошла! Откройте приложение и посмотрите свой план ухода.",
            web_app_url=f"{settings.MINI_APP_URL.rstrip('/')}/plan",
            web_app_text="Открыть план",
        )
    except AppError as e:
        logger.warning("payment notification failed: telegram_id=%s error=%s", telegram_id, e.message)
