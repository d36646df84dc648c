"""
权益路由模块

前端判断用户能否访问付费内容的唯一依据。
"""
from __future__ import annotations

from fastapi import APIRouter, Query

from skiniq.api.deps import CurrentUser, SessionDep
from skiniq.api.schemas import ApiEnvelope, EntitlementCheckData, EntitlementData, EntitlementsData
from skiniq.models import Entitlement, as_utc
from skiniq.services import payments as payment_service

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


def _to_entitlement_data(row: Entitlement) -> EntitlementData:
    return EntitlementData(
        code=row.code,
        valid_until=as_utc(row.valid_until),
        granted_from_payment_id=str(row.granted_from_payment_id),
        created_at=as_utc(row.created_at),
    )


@router.get("/check", response_model=ApiEnvelope)
def check(
    session: SessionDep,
    current_user: CurrentUser,
    code: str = Query(min_length=1, max_length=64),
) -> ApiEnvelope:
    """
    检查当前用户是否拥有某项权益

    存在多条有效记录时，返回最晚的过期时间（永久权益的 validUntil 为 null）。

    请求路径: GET /api/v1/entitlements/check?code=paid_access
    """
    rows = payment_service.active_entitlements(session=session, user_id=current_user.id, code=code)
    valid_until = None
    if rows and all(r.valid_until is not None for r in rows):
        valid_until = max(as_utc(r.valid_until) for r in rows if r.valid_until is not None)
    return ApiEnvelope(
        data=EntitlementCheckData(code=code, has_access=bool(rows), valid_until=valid_until)
    )


@router.get("", response_model=ApiEnvelope)
def list_entitlements(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    """当前用户所有有效的权益"""
    rows = payment_service.active_entitlements(session=session, user_id=current_user.id)
    return ApiEnvelope(data=EntitlementsData(entitlements=[_to_entitlement_data(r) for r in rows]))
