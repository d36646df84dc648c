"""
管理员认证路由模块

管理后台使用邮箱 + 访问码登录：
- 只有白名单（admin_accounts）中的邮箱可以登录
- 白名单中尚未设置访问码的管理员，第一次登录时设置访问码（newCode + confirmCode）
- 登录成功后签发 JWT，同时写入 httpOnly cookie
- 同一客户端（按 IP）每 ADMIN_LOGIN_WINDOW_SECONDS 秒最多尝试 ADMIN_LOGIN_MAX_ATTEMPTS 次，超出返回 429

不提供吊销列表，退出登录只是清除 cookie。
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response

from skiniq import crud
from skiniq.api.deps import AdminCacheDep, CurrentAdmin, SessionDep
from skiniq.api.errors import AppError, not_configured, validation_failed
from skiniq.api.schemas import AdminIdentity, AdminLoginData, AdminLoginRequest, ApiEnvelope
from skiniq.core import security
from skiniq.core.admin_cache import AdminCache
from skiniq.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin-auth"])

MIN_CODE_LENGTH = 6


def _invalid_credentials() -> AppError:
    # 邮箱不存在和访问码错误返回同样的消息，防止枚举白名单
    return AppError(code=401101, message="Invalid email or code", status_code=401)


def _client_identifier(request: Request) -> str:
    # 部署在反向代理之后，优先取 X-Forwarded-For 的第一个地址
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return request.headers.get("user-agent", "unknown")[:50]


def _check_rate_limit(cache: AdminCache, request: Request) -> None:
    identifier = _client_identifier(request)
    attempts = cache.hit(f"admin-login:{identifier}", ttl=settings.ADMIN_LOGIN_WINDOW_SECONDS)
    if attempts > settings.ADMIN_LOGIN_MAX_ATTEMPTS:
        logger.warning("admin login rate limited: client=%s attempts=%d", identifier, attempts)
        raise AppError(code=429101, message="Too many login attempts, try again later", status_code=429)


def _set_admin_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.ADMIN_COOKIE_NAME,
        value=token,
        max_age=settings.ADMIN_TOKEN_EXPIRE_DAYS * 24 * 3600,
        httponly=True,
        secure=settings.ENVIRONMENT != "local",
        samesite="lax",
        path="/",
    )


@router.post("/login", response_model=ApiEnvelope)
def login(
    session: SessionDep,
    cache: AdminCacheDep,
    body: AdminLoginRequest,
    request: Request,
    response: Response,
) -> ApiEnvelope:
    """
    管理员登录

    请求路径: POST /api/v1/admin/login

    Raises:
        AppError: 邮箱不在白名单或访问码错误时 401；首次设置访问码参数不合法时 400
            尝试次数超限时 429
    """
    if not settings.JWT_SECRET:
        raise not_configured("JWT_SECRET")

    _check_rate_limit(cache, request)

    account = crud.get_admin_by_email(session=session, email=body.email)
    if account is None:
        logger.info("admin login rejected: unknown email")
        raise _invalid_credentials()

    if account.password_hash is None:
        # 首次登录：设置访问码
        if not body.new_code:
            raise validation_failed("newCode is required to set up access", code=400101)
        if len(body.new_code) < MIN_CODE_LENGTH:
            raise validation_failed(
                f"newCode must be at least {MIN_CODE_LENGTH} characters", code=400102
            )
        if body.new_code != body.confirm_code:
            raise validation_failed("confirmCode does not match newCode", code=400103)
        account = crud.set_admin_code(session=session, account=account, code=body.new_code)
        logger.info("admin %s set up an access code", account.id)
    elif not body.code or not security.verify_password(body.code, account.password_hash):
        logger.info("admin login rejected: wrong code for admin %s", account.id)
        raise _invalid_credentials()

    token = security.create_admin_token(account.id, role=account.role)
    _set_admin_cookie(response, token)
    logger.info("admin %s logged in", account.id)
    return ApiEnvelope(
        data=AdminLoginData(token=token, admin=AdminIdentity(id=str(account.id), role=account.role))
    )


@router.post("/logout", response_model=ApiEnvelope)
def logout(response: Response) -> ApiEnvelope:
    response.delete_cookie(key=settings.ADMIN_COOKIE_NAME, path="/")
    return ApiEnvelope(data={"ok": True})


@router.get("/me", response_model=ApiEnvelope)
def me(admin: CurrentAdmin) -> ApiEnvelope:
    return ApiEnvelope(data=AdminIdentity(id=admin.admin_id or "", role=admin.role or "admin"))
