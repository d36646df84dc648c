"""
管理员鉴权

从请求中取出管理员 token（优先 cookie `admin_token`，其次 `Authorization: Bearer`），
校验签名、issuer、audience 和过期时间。

verify_admin 永远不抛异常：任何失败都返回 valid=False 和区分性的错误信息。
错误信息只用于服务端日志，对外统一返回 401 "Unauthorized"。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import jwt
from fastapi import Request

from skiniq.core import security
from skiniq.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminAuthResult:
    valid: bool
    admin_id: str | None = None
    role: str | None = None
    error: str | None = None
    # True 表示服务端缺少 JWT_SECRET，应返回 500 而不是 401
    misconfigured: bool = False


def extract_admin_token(request: Request) -> str | None:
    token = request.cookies.get(settings.ADMIN_COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("authorization") or ""
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def verify_token(token: str | None) -> AdminAuthResult:
    if not token:
        return AdminAuthResult(valid=False, error="No admin token found in request")

    try:
        claims = security.decode_admin_token(token)
    except security.MissingSigningSecret:
        return AdminAuthResult(
            valid=False,
            error="JWT_SECRET is not set. Please set JWT_SECRET environment variable.",
            misconfigured=True,
        )
    except jwt.ExpiredSignatureError:
        return AdminAuthResult(valid=False, error="Token expired")
    except jwt.InvalidAudienceError:
        return AdminAuthResult(valid=False, error="Invalid audience")
    except jwt.InvalidIssuerError:
        return AdminAuthResult(valid=False, error="Invalid issuer")
    except jwt.MissingRequiredClaimError as e:
        return AdminAuthResult(valid=False, error=f"Missing claim: {e.claim}")
    except jwt.InvalidSignatureError:
        return AdminAuthResult(valid=False, error="Invalid signature")
    except jwt.InvalidTokenError as e:
        return AdminAuthResult(valid=False, error=str(e) or "Invalid token")

    admin_id = claims.get("adminId")
    if admin_id is None or admin_id == "":
        return AdminAuthResult(valid=False, error="Token has no adminId")

    return AdminAuthResult(
        valid=True,
        admin_id=str(admin_id),
        role=str(claims.get("role") or "admin"),
    )


def verify_admin(request: Request) -> AdminAuthResult:
    return verify_token(extract_admin_token(request))


def verify_admin_boolean(request: Request) -> bool:
    """For call sites that only need an admit/deny decision."""
    result = verify_admin(request)
    if not result.valid:
        logger.info("admin auth rejected: %s", result.error)
    return result.valid
