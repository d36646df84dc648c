"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。
FastAPI 的依赖注入系统会自动处理这些依赖的创建和注入。

三类调用方：
- Mini App 用户：请求头 X-Telegram-Init-Data 携带 Telegram WebApp initData
- 管理员：cookie admin_token 或 Authorization: Bearer <JWT>
- 定时任务：Authorization: Bearer <CRON_SECRET> 或 ?secret=<CRON_SECRET>

鉴权失败对外统一返回 401 "Unauthorized"，具体原因只写服务端日志；
服务端缺少密钥时返回 500。
"""
import hmac
import logging
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlmodel import Session

from skiniq import crud
from skiniq.api.errors import AppError, not_configured, unauthorized
from skiniq.core.admin_auth import AdminAuthResult, verify_admin
from skiniq.core.admin_cache import AdminCache
from skiniq.core.config import settings
from skiniq.core.db import engine
from skiniq.core.telegram_auth import InitDataError, validate_init_data
from skiniq.models import User

logger = logging.getLogger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]


def _user_from_init_data(session: Session, init_data: str) -> User:
    bot_token = settings.TELEGRAM_BOT_TOKEN
    if not bot_token:
        raise not_configured("TELEGRAM_BOT_TOKEN")
    try:
        tg_user = validate_init_data(
            init_data,
            bot_token,
            max_age_seconds=settings.TELEGRAM_INIT_DATA_MAX_AGE_SECONDS,
        )
    except InitDataError as e:
        logger.info("telegram auth rejected: %s", e)
        raise unauthorized()
    return crud.get_or_create_user_from_telegram(session=session, tg_user=tg_user)


def get_current_user(
    session: SessionDep,
    x_telegram_init_data: Annotated[str | None, Header()] = None,
) -> User:
    """
    获取当前 Mini App 用户（依赖注入）

    校验 initData 签名与时效，并按 Telegram ID 获取或创建用户。
    """
    if not x_telegram_init_data:
        logger.info("telegram auth rejected: no initData provided")
        raise unauthorized()
    return _user_from_init_data(session, x_telegram_init_data)


def get_optional_user(
    session: SessionDep,
    x_telegram_init_data: Annotated[str | None, Header()] = None,
) -> User | None:
    """Like get_current_user, but anonymous callers get None instead of 401."""
    if not x_telegram_init_data or not settings.TELEGRAM_BOT_TOKEN:
        return None
    try:
        return _user_from_init_data(session, x_telegram_init_data)
    except AppError as e:
        logger.info("optional telegram auth ignored: %s", e)
        return None


CurrentUser = Annotated[User, Depends(get_current_user)]
OptionalUser = Annotated[User | None, Depends(get_optional_user)]


def get_current_admin(request: Request) -> AdminAuthResult:
    """
    管理员鉴权（依赖注入）

    - 服务端缺少 JWT_SECRET：500
    - 其他任何失败：401 "Unauthorized"，具体原因只记录日志
    """
    result = verify_admin(request)
    if result.misconfigured:
        raise not_configured("JWT_SECRET")
    if not result.valid:
        logger.info("admin auth rejected: %s (%s %s)", result.error, request.method, request.url.path)
        raise unauthorized()
    return result


CurrentAdmin = Annotated[AdminAuthResult, Depends(get_current_admin)]


def _provided_cron_secret(request: Request) -> str | None:
    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.query_params.get("secret") or None


def verify_cron_secret(request: Request) -> None:
    """
    定时任务共享密钥校验

    密钥可以放在 Authorization: Bearer <secret> 或查询参数 ?secret= 中。
    """
    expected = settings.CRON_SECRET
    if not expected:
        raise not_configured("CRON_SECRET")
    provided = _provided_cron_secret(request)
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.info("cron trigger rejected: %s", "secret mismatch" if provided else "no secret")
        raise unauthorized()


def verify_cron_or_admin(request: Request) -> None:
    """Admits a signed-in admin, otherwise falls back to the cron secret."""
    if verify_admin(request).valid:
        return
    verify_cron_secret(request)


def verify_scheduled_trigger(request: Request) -> None:
    """
    平台定时任务（Vercel Cron）会带上 x-vercel-cron: 1 请求头；
    手动触发时需要 Bearer CRON_SECRET。
    """
    if request.headers.get("x-vercel-cron") == "1":
        return
    verify_cron_secret(request)


def get_admin_cache(request: Request) -> AdminCache:
    return request.app.state.admin_cache


AdminCacheDep = Annotated[AdminCache, Depends(get_admin_cache)]
