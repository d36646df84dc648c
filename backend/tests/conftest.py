from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Generator
from typing import Any
from urllib.parse import urlencode

# Secrets must be present before skiniq.core.config builds its settings singleton.
os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-0123456789abcdef")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("PAYMENTS_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("BROADCAST_SEND_DELAY_MS", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from skiniq.api.deps import get_db  # noqa: E402
from skiniq.core import security  # noqa: E402
from skiniq.core.config import settings  # noqa: E402
from skiniq.core.telegram_auth import sign_init_data  # noqa: E402
from skiniq.integrations.telegram_bot import telegram_client  # noqa: E402
from skiniq.main import app  # noqa: E402
from skiniq.models import (  # noqa: E402
    AdminAccount,
    BroadcastLog,
    BroadcastMessage,
    ClientLog,
    Entitlement,
    Payment,
    SupportChat,
    SupportMessage,
    User,
)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        # Clean tables after each test (children first).
        session.rollback()
        session.exec(delete(BroadcastLog))
        session.exec(delete(BroadcastMessage))
        session.exec(delete(SupportMessage))
        session.exec(delete(SupportChat))
        session.exec(delete(Entitlement))
        session.exec(delete(Payment))
        session.exec(delete(ClientLog))
        session.exec(delete(AdminAccount))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def client(engine, db) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_init_data(
    telegram_id: int = 10001,
    first_name: str = "Anna",
    *,
    username: str | None = "anna",
    auth_date: int | None = None,
    bot_token: str | None = None,
) -> str:
    user: dict[str, Any] = {"id": telegram_id, "first_name": first_name}
    if username:
        user["username"] = username
    fields = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":"), ensure_ascii=False),
    }
    fields["hash"] = sign_init_data(fields, bot_token or settings.TELEGRAM_BOT_TOKEN or "")
    return urlencode(fields)


def tg_headers(telegram_id: int = 10001, first_name: str = "Anna") -> dict[str, str]:
    return {"X-Telegram-Init-Data": make_init_data(telegram_id, first_name)}


def admin_headers(admin_id: int | str = 1, role: str = "admin") -> dict[str, str]:
    token = security.create_admin_token(admin_id, role=role)
    return {"Authorization": f"Bearer {token}"}


class FakeTelegram:
    """Records outbound Bot API calls; chat ids in `fail_for` raise like a blocked bot."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()

    def _record(self, method: str, chat_id: Any, **payload: Any) -> dict[str, Any]:
        from skiniq.api.errors import AppError

        if str(chat_id) in self.fail_for:
            raise AppError(
                code=502402,
                message="Telegram sendMessage failed: Forbidden: bot was blocked by the user",
                status_code=502,
            )
        self.sent.append({"method": method, "chat_id": str(chat_id), **payload})
        return {"ok": True, "result": {"message_id": len(self.sent)}}

    def send_message(self, *, chat_id: Any, text: str, **kwargs: Any) -> dict[str, Any]:
        return self._record("sendMessage", chat_id, text=text, **kwargs)

    def send_photo(self, *, chat_id: Any, photo_url: str, caption: str, **kwargs: Any) -> dict[str, Any]:
        return self._record("sendPhoto", chat_id, photo_url=photo_url, caption=caption, **kwargs)


@pytest.fixture()
def fake_telegram(monkeypatch) -> FakeTelegram:
    fake = FakeTelegram()
    monkeypatch.setattr(telegram_client, "send_message", fake.send_message)
    monkeypatch.setattr(telegram_client, "send_photo", fake.send_photo)
    return fake


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_user(db) -> Callable[..., User]:
    def _make(telegram_id: str = "20001", first_name: str | None = "Ivan", **kwargs: Any) -> User:
        user = User(telegram_id=telegram_id, first_name=first_name, **kwargs)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make
