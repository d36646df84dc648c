from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from passlib.context import CryptContext

from skiniq.core.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


ALGORITHM = "HS256"


class MissingSigningSecret(RuntimeError):
    """JWT_SECRET is not configured on the server."""


def _signing_secret() -> str:
    if not settings.JWT_SECRET:
        raise MissingSigningSecret("JWT_SECRET is not set")
    return settings.JWT_SECRET


def create_admin_token(
    admin_id: str | int,
    role: str = "admin",
    expires_delta: timedelta | None = None,
    **extra: Any,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.ADMIN_TOKEN_EXPIRE_DAYS)
    now = datetime.now(timezone.utc)
    to_encode = {
        **extra,
        "adminId": str(admin_id),
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
        "iss": settings.ADMIN_TOKEN_ISSUER,
        "aud": settings.ADMIN_TOKEN_AUDIENCE,
    }
    return jwt.encode(to_encode, _signing_secret(), algorithm=ALGORITHM)


def decode_admin_token(token: str) -> dict[str, Any]:
    """Raises MissingSigningSecret or a jwt.InvalidTokenError subclass."""
    return jwt.decode(
        token,
        _signing_secret(),
        algorithms=[ALGORITHM],
        issuer=settings.ADMIN_TOKEN_ISSUER,
        audience=settings.ADMIN_TOKEN_AUDIENCE,
        options={"require": ["exp", "iss", "aud"]},
    )


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)
