"""
群发路由模块（管理后台）

worker 接口由定时任务（CRON_SECRET）或已登录的管理员触发，每次最多处理一条到期的群发。
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from skiniq.api.deps import CurrentAdmin, SessionDep, verify_cron_or_admin
from skiniq.api.schemas import (
    ApiEnvelope,
    BroadcastCreateRequest,
    BroadcastData,
    BroadcastScheduleRequest,
    BroadcastsData,
    BroadcastWorkerData,
)
from skiniq.models import BroadcastMessage, as_utc
from skiniq.services import broadcasts as broadcast_service

router = APIRouter(prefix="/admin/broadcasts", tags=["admin-broadcasts"])


def _to_broadcast_data(b: BroadcastMessage) -> BroadcastData:
    return BroadcastData(
        id=str(b.id),
        title=b.title,
        message=b.message,
        status=b.status,
        scheduled_at=as_utc(b.scheduled_at),
        image_url=b.image_url,
        buttons=b.buttons,
        send_to_all=b.send_to_all,
        total_count=b.total_count,
        sent_count=b.sent_count,
        failed_count=b.failed_count,
        created_at=as_utc(b.created_at),
        sent_at=as_utc(b.sent_at),
    )


@router.post("", response_model=ApiEnvelope)
def create_broadcast(
    session: SessionDep, _: CurrentAdmin, body: BroadcastCreateRequest
) -> ApiEnvelope:
    """带 scheduledAt 时直接进入 scheduled，否则为 draft"""
    broadcast = broadcast_service.create_broadcast(
        session=session,
        title=body.title,
        message=body.message,
        scheduled_at=body.scheduled_at,
        image_url=body.image_url,
        buttons=[b.model_dump() for b in body.buttons] if body.buttons else None,
        send_to_all=body.send_to_all,
    )
    return ApiEnvelope(data=_to_broadcast_data(broadcast))


@router.get("", response_model=ApiEnvelope)
def list_broadcasts(session: SessionDep, _: CurrentAdmin) -> ApiEnvelope:
    rows = broadcast_service.list_broadcasts(session=session)
    return ApiEnvelope(data=BroadcastsData(broadcasts=[_to_broadcast_data(b) for b in rows]))


@router.post("/worker", response_model=ApiEnvelope, dependencies=[Depends(verify_cron_or_admin)])
def run_worker(session: SessionDep) -> ApiEnvelope:
    """
    发送一条到期的群发

    请求路径: POST /api/v1/admin/broadcasts/worker
    鉴权: Authorization: Bearer <CRON_SECRET>、?secret=<CRON_SECRET> 或管理员 token
    """
    broadcast = broadcast_service.process_due_broadcast(session=session)
    return ApiEnvelope(
        data=BroadcastWorkerData(
            processed=broadcast is not None,
            broadcast=_to_broadcast_data(broadcast) if broadcast is not None else None,
        )
    )


@router.get("/{broadcast_id}", response_model=ApiEnvelope)
def get_broadcast(session: SessionDep, _: CurrentAdmin, broadcast_id: int) -> ApiEnvelope:
    broadcast = broadcast_service.get_broadcast(session=session, broadcast_id=broadcast_id)
    return ApiEnvelope(data=_to_broadcast_data(broadcast))


@router.post("/{broadcast_id}/schedule", response_model=ApiEnvelope)
def schedule_broadcast(
    session: SessionDep,
    _: CurrentAdmin,
    broadcast_id: int,
    body: BroadcastScheduleRequest | None = None,
) -> ApiEnvelope:
    """排期发送（不传 scheduledAt 表示立即发送），只能从 draft 排期"""
    broadcast = broadcast_service.schedule_broadcast(
        session=session,
        broadcast_id=broadcast_id,
        scheduled_at=body.scheduled_at if body else None,
    )
    return ApiEnvelope(data=_to_broadcast_data(broadcast))
