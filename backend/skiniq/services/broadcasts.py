"""
群发消息服务

流程：
1. 管理员创建群发（draft，或带 scheduled_at 直接进入 scheduled）
2. draft 可以排期（立即或指定时间）
3. 定时任务调用 worker，每次处理一条到期的 scheduled 群发：
   渲染 {name}/{link} 占位符，逐个用户发送（两条之间固定间隔，避免触发 Telegram 限速），
   每个接收者写一条 BroadcastLog，最后置为 sent 或 failed

sent_at 在 worker 认领时写入，用条件更新防止两个 worker 重复发送同一条群发。
发送过程中出现意外异常时群发置为 failed（已发送的计数保留）；
worker 进程被强制结束时，认领超过 BROADCAST_CLAIM_TIMEOUT_SECONDS 的群发由下一次运行置为 failed，不会重发。
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, update
from sqlmodel import Session, col, select

from skiniq.api.errors import AppError, not_configured, not_found, validation_failed
from skiniq.core.config import settings
from skiniq.enums import BroadcastStatus, DeliveryStatus
from skiniq.integrations.telegram_bot import telegram_client
from skiniq.models import BroadcastLog, BroadcastMessage, Entitlement, User, as_utc, utc_now
from skiniq.services.entitlements import DEFAULT_ENTITLEMENT_CODE

logger = logging.getLogger(__name__)


def render_message(template: str, user: User) -> str:
    name = user.first_name or user.username or "друг"
    return template.replace("{name}", name).replace("{link}", settings.BOT_LINK)


def create_broadcast(
    *,
    session: Session,
    title: str,
    message: str,
    scheduled_at: datetime | None = None,
    image_url: str | None = None,
    buttons: list[dict[str, str]] | None = None,
    send_to_all: bool = True,
) -> BroadcastMessage:
    broadcast = BroadcastMessage(
        title=title,
        message=message,
        status=BroadcastStatus.scheduled if scheduled_at else BroadcastStatus.draft,
        scheduled_at=as_utc(scheduled_at),
        image_url=image_url,
        buttons=buttons,
        send_to_all=send_to_all,
    )
    session.add(broadcast)
    session.commit()
    session.refresh(broadcast)
    logger.info("broadcast %s created (%s)", broadcast.id, broadcast.status)
    return broadcast


def list_broadcasts(*, session: Session, limit: int = 50) -> list[BroadcastMessage]:
    stmt = select(BroadcastMessage).order_by(col(BroadcastMessage.created_at).desc()).limit(limit)
    return list(session.exec(stmt).all())


def get_broadcast(*, session: Session, broadcast_id: int) -> BroadcastMessage:
    broadcast = session.get(BroadcastMessage, broadcast_id)
    if broadcast is None:
        raise not_found("Broadcast not found", code=404401)
    return broadcast


def schedule_broadcast(
    *,
    session: Session,
    broadcast_id: int,
    scheduled_at: datetime | None = None,
    now: datetime | None = None,
) -> BroadcastMessage:
    broadcast = get_broadcast(session=session, broadcast_id=broadcast_id)
    if broadcast.status != BroadcastStatus.draft:
        raise validation_failed("Only draft broadcasts can be scheduled", code=400401)
    broadcast.status = BroadcastStatus.scheduled
    broadcast.scheduled_at = as_utc(scheduled_at) or now or utc_now()
    session.add(broadcast)
    session.commit()
    session.refresh(broadcast)
    return broadcast


def _recipients(session: Session, broadcast: BroadcastMessage, now: datetime) -> list[User]:
    stmt = select(User).order_by(col(User.created_at))
    if not broadcast.send_to_all:
        paid_user_ids = select(Entitlement.user_id).where(
            Entitlement.code == DEFAULT_ENTITLEMENT_CODE,
            or_(col(Entitlement.valid_until).is_(None), col(Entitlement.valid_until) > now),
        )
        stmt = stmt.where(col(User.id).in_(paid_user_ids))
    return list(session.exec(stmt).all())


def _claim_due(session: Session, now: datetime) -> BroadcastMessage | None:
    candidate = session.exec(
        select(BroadcastMessage)
        .where(
            BroadcastMessage.status == BroadcastStatus.scheduled.value,
            col(BroadcastMessage.scheduled_at) <= now,
            col(BroadcastMessage.sent_at).is_(None),
        )
        .order_by(col(BroadcastMessage.scheduled_at))
        .limit(1)
    ).first()
    if candidate is None:
        return None

    result = session.exec(  # type: ignore[call-overload]
        update(BroadcastMessage)
        .where(
            col(BroadcastMessage.id) == candidate.id,
            col(BroadcastMessage.sent_at).is_(None),
        )
        .values(sent_at=now)
    )
    session.commit()
    if result.rowcount != 1:
        logger.info("broadcast %s already claimed by another worker", candidate.id)
        return None
    session.refresh(candidate)
    return candidate


def _fail_stale_claims(session: Session, now: datetime) -> int:
    cutoff = now - timedelta(seconds=settings.BROADCAST_CLAIM_TIMEOUT_SECONDS)
    result = session.exec(  # type: ignore[call-overload]
        update(BroadcastMessage)
        .where(
            BroadcastMessage.status == BroadcastStatus.scheduled.value,
            col(BroadcastMessage.sent_at).is_not(None),
            col(BroadcastMessage.sent_at) < cutoff,
        )
        .values(status=BroadcastStatus.failed.value)
    )
    session.commit()
    if result.rowcount:
        logger.error("marked %d interrupted broadcast(s) as failed", result.rowcount)
    return result.rowcount


def _send_all(
    session: Session, broadcast: BroadcastMessage, recipients: list[User], sleep: Callable[[float], Any]
) -> None:
    delay = settings.BROADCAST_SEND_DELAY_MS / 1000
    for i, user in enumerate(recipients):
        if i and delay > 0:
            sleep(delay)
        try:
            _deliver(broadcast, user)
        except AppError as e:
            broadcast.failed_count += 1
            session.add(
                BroadcastLog(
                    broadcast_id=broadcast.id,
                    user_id=user.id,
                    telegram_id=user.telegram_id,
                    status=DeliveryStatus.failed,
                    error_message=e.message,
                )
            )
        else:
            broadcast.sent_count += 1
            session.add(
                BroadcastLog(
                    broadcast_id=broadcast.id,
                    user_id=user.id,
                    telegram_id=user.telegram_id,
                    status=DeliveryStatus.sent,
                )
            )
        session.add(broadcast)
        session.commit()


def _deliver(broadcast: BroadcastMessage, user: User) -> None:
    text = render_message(broadcast.message, user)
    buttons: list[dict[str, str]] | None = broadcast.buttons or None
    if broadcast.image_url:
        telegram_client.send_photo(
            chat_id=user.telegram_id, photo_url=broadcast.image_url, caption=text, buttons=buttons
        )
    else:
        telegram_client.send_message(chat_id=user.telegram_id, text=text, buttons=buttons)


def process_due_broadcast(
    *,
    session: Session,
    now: datetime | None = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> BroadcastMessage | None:
    """
    Sends the oldest due scheduled broadcast, if any, and returns it.

    Individual delivery failures are recorded per recipient and never abort
    the run. Any other error marks the broadcast failed, keeps the counters
    committed so far and propagates.
    """
    if not telegram_client.configured:
        raise not_configured("TELEGRAM_BOT_TOKEN")
    now = now or utc_now()

    _fail_stale_claims(session, now)
    broadcast = _claim_due(session, now)
    if broadcast is None:
        return None

    recipients = _recipients(session, broadcast, now)
    broadcast.total_count = len(recipients)
    session.add(broadcast)
    session.commit()
    logger.info("broadcast %s: sending to %d users", broadcast.id, len(recipients))

    try:
        _send_all(session, broadcast, recipients, sleep)
    except Exception:
        session.rollback()
        broadcast.status = BroadcastStatus.failed
        session.add(broadcast)
        session.commit()
        logger.exception(
            "broadcast %s aborted: sent=%d failed=%d",
            broadcast.id,
            broadcast.sent_count,
            broadcast.failed_count,
        )
        raise

    broadcast.status = BroadcastStatus.sent if broadcast.sent_count > 0 else BroadcastStatus.failed
    broadcast.sent_at = utc_now()
    session.add(broadcast)
    session.commit()
    session.refresh(broadcast)
    logger.info(
        "broadcast %s finished: status=%s sent=%d failed=%d",
        broadcast.id,
        broadcast.status,
        broadcast.sent_count,
        broadcast.failed_count,
    )
    return broadcast
