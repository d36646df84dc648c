"""
客户端日志路由模块

- POST   /logs: Mini App 上报日志（用户身份可选）
- GET    /admin/logs: 管理员查询日志
- DELETE /admin/logs: 管理员手动清理旧日志
- GET|POST /cron/cleanup-logs: 定时清理，保留 LOG_RETENTION_DAYS 天
"""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from skiniq.api.deps import CurrentAdmin, OptionalUser, SessionDep, verify_scheduled_trigger
from skiniq.api.schemas import (
    ApiEnvelope,
    ClientLogCreateRequest,
    ClientLogData,
    ClientLogsData,
    LogsDeletedData,
)
from skiniq.core.config import settings
from skiniq.enums import ClientLogLevel
from skiniq.models import ClientLog, as_utc
from skiniq.services import logs as log_service

router = APIRouter(tags=["logs"])


def _to_log_data(entry: ClientLog) -> ClientLogData:
    return ClientLogData(
        id=str(entry.id),
        user_id=str(entry.user_id) if entry.user_id is not None else None,
        level=entry.level,
        message=entry.message,
        context=entry.context,
        url=entry.url,
        user_agent=entry.user_agent,
        created_at=as_utc(entry.created_at),
    )


@router.post("/logs", response_model=ApiEnvelope)
def create_log(
    session: SessionDep, current_user: OptionalUser, body: ClientLogCreateRequest, request: Request
) -> ApiEnvelope:
    entry = log_service.create_log(
        session=session,
        level=body.level,
        message=body.message,
        user_id=current_user.id if current_user else None,
        context=body.context,
        url=body.url,
        user_agent=body.user_agent or request.headers.get("user-agent"),
    )
    return ApiEnvelope(data={"id": str(entry.id)})


@router.get("/admin/logs", response_model=ApiEnvelope)
def list_logs(
    session: SessionDep,
    _: CurrentAdmin,
    user_id: int | None = Query(default=None, alias="userId"),
    level: ClientLogLevel | None = Query(default=None),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    limit: int = Query(default=100, ge=1, le=log_service.MAX_QUERY_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> ApiEnvelope:
    rows, count = log_service.query_logs(
        session=session,
        user_id=user_id,
        level=level,
        start=as_utc(start_date),
        end=as_utc(end_date),
        limit=limit,
        offset=offset,
    )
    return ApiEnvelope(data=ClientLogsData(logs=[_to_log_data(r) for r in rows], count=count))


@router.delete("/admin/logs", response_model=ApiEnvelope)
def delete_logs(
    session: SessionDep,
    _: CurrentAdmin,
    days: int = Query(default=7, ge=1, le=30),
    user_id: int | None = Query(default=None, alias="userId"),
) -> ApiEnvelope:
    """删除 days 天之前的日志（可只删某个用户的）"""
    deleted = log_service.delete_older_than(session=session, days=days, user_id=user_id)
    return ApiEnvelope(data=LogsDeletedData(deleted=deleted, days=days))


@router.api_route(
    "/cron/cleanup-logs",
    methods=["GET", "POST"],
    response_model=ApiEnvelope,
    dependencies=[Depends(verify_scheduled_trigger)],
)
def cleanup_logs(session: SessionDep) -> ApiEnvelope:
    days = settings.LOG_RETENTION_DAYS
    deleted = log_service.delete_older_than(session=session, days=days)
    return ApiEnvelope(data=LogsDeletedData(deleted=deleted, days=days))
