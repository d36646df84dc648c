"""管理后台首页统计（带进程内缓存）"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_
from sqlmodel import Session, col, func, select

from skiniq.core.admin_cache import AdminCache
from skiniq.enums import PaymentStatus, SupportChatStatus
from skiniq.models import Entitlement, Payment, SupportChat, User, utc_now

STATS_CACHE_KEY = "admin:stats"


def collect_stats(*, session: Session, now: datetime | None = None) -> dict[str, Any]:
    now = now or utc_now()
    total_users = session.exec(select(func.count()).select_from(User)).one()
    active_users = session.exec(
        select(func.count())
        .select_from(User)
        .where(col(User.last_active_at) >= now - timedelta(days=7))
    ).one()
    users_with_access = session.exec(
        select(func.count(func.distinct(Entitlement.user_id))).where(
            or_(col(Entitlement.valid_until).is_(None), col(Entitlement.valid_until) > now)
        )
    ).one()
    completed = session.exec(
        select(func.count(), func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.status == PaymentStatus.completed.value
        )
    ).one()
    open_chats = session.exec(
        select(func.count())
        .select_from(SupportChat)
        .where(SupportChat.status != SupportChatStatus.closed.value)
    ).one()
    unread = session.exec(select(func.coalesce(func.sum(SupportChat.unread), 0))).one()

    return {
        "totalUsers": total_users,
        "activeUsers7d": active_users,
        "usersWithAccess": users_with_access,
        "completedPayments": completed[0],
        "revenueMinor": int(completed[1]),
        "openChats": open_chats,
        "unreadMessages": int(unread),
        "generatedAt": now.isoformat(),
    }


def get_stats(*, session: Session, cache: AdminCache, ttl: float | None = None) -> dict[str, Any]:
    cached = cache.get(STATS_CACHE_KEY)
    if cached is not None:
        return cached
    stats = collect_stats(session=session)
    cache.set(STATS_CACHE_KEY, stats, ttl)
    return stats
