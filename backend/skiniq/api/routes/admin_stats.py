"""管理后台首页统计"""
from fastapi import APIRouter

from skiniq.api.deps import AdminCacheDep, CurrentAdmin, SessionDep
from skiniq.api.schemas import ApiEnvelope
from skiniq.services.admin_stats import get_stats

router = APIRouter(prefix="/admin", tags=["admin-stats"])


@router.get("/stats", response_model=ApiEnvelope)
def stats(session: SessionDep, cache: AdminCacheDep, _: CurrentAdmin) -> ApiEnvelope:
    """结果缓存 ADMIN_CACHE_DEFAULT_TTL_SECONDS 秒，数字可能略有滞后"""
    return ApiEnvelope(data=get_stats(session=session, cache=cache))
