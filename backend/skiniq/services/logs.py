"""
客户端日志服务

日志只保留 LOG_RETENTION_DAYS 天：定时任务每天清理一次，管理员也可以手动清理。
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete
from sqlmodel import Session, col, func, select

from skiniq.enums import ClientLogLevel
from skiniq.models import ClientLog, utc_now

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 1000


def create_log(
    *,
    session: Session,
    level: ClientLogLevel,
    message: str,
    user_id: int | None = None,
    context: dict[str, Any] | None = None,
    url: str | None = None,
    user_agent: str | None = None,
) -> ClientLog:
    entry = ClientLog(
        user_id=user_id,
        level=level,
        message=message,
        context=context,
        url=url,
        user_agent=user_agent[:512] if user_agent else None,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def query_logs(
    *,
    session: Session,
    user_id: int | None = None,
    level: ClientLogLevel | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[ClientLog], int]:
    """Newest first; returns the page and the total matching count."""
    conditions = []
    if user_id is not None:
        conditions.append(ClientLog.user_id == user_id)
    if level is not None:
        conditions.append(ClientLog.level == level.value)
    if start is not None:
        conditions.append(col(ClientLog.created_at) >= start)
    if end is not None:
        conditions.append(col(ClientLog.created_at) <= end)

    count = session.exec(select(func.count()).select_from(ClientLog).where(*conditions)).one()
    rows = session.exec(
        select(ClientLog)
        .where(*conditions)
        .order_by(col(ClientLog.created_at).desc())
        .offset(offset)
        .limit(min(limit, MAX_QUERY_LIMIT))
    ).all()
    return list(rows), count


def delete_older_than(
    *,
    session: Session,
    days: int,
    user_id: int | None = None,
    now: datetime | None = None,
) -> int:
    cutoff = (now or utc_now()) - timedelta(days=days)
    stmt = delete(ClientLog).where(col(ClientLog.created_at) < cutoff)
    if user_id is not None:
        stmt = stmt.where(col(ClientLog.user_id) == user_id)
    result = session.exec(stmt)  # type: ignore[call-overload]
    session.commit()
    deleted = result.rowcount or 0
    logger.info("deleted %d client logs older than %s", deleted, cutoff.isoformat())
    return deleted
