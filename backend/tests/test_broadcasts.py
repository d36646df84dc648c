from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import admin_headers
from sqlmodel import select

from skiniq.api.errors import AppError
from skiniq.core.config import settings
from skiniq.enums import BroadcastStatus, DeliveryStatus, PaymentStatus
from skiniq.models import BroadcastLog, BroadcastMessage, Entitlement, Payment, User
from skiniq.services import broadcasts as broadcast_service

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _grant_paid_access(db, user: User, valid_until: datetime | None = None) -> None:
    payment = Payment(
        user_id=user.id,
        product_code="plan_access",
        amount=19900,
        idempotency_key=f"bc-{user.id}",
        status=PaymentStatus.completed,
    )
    db.add(payment)
    db.commit()
    db.add(
        Entitlement(
            user_id=user.id,
            code="paid_access",
            valid_until=valid_until,
            granted_from_payment_id=payment.id,
        )
    )
    db.commit()


def _logs(db, broadcast_id: int) -> list[BroadcastLog]:
    db.expire_all()
    return list(db.exec(select(BroadcastLog).where(BroadcastLog.broadcast_id == broadcast_id)).all())


def test_render_message_placeholders():
    assert broadcast_service.render_message("Hi {name}! {link}", User(telegram_id="1", first_name="Anna")) == (
        f"Hi Anna! {settings.BOT_LINK}"
    )
    assert broadcast_service.render_message("{name}", User(telegram_id="1", username="anna_k")) == "anna_k"
    assert broadcast_service.render_message("{name}", User(telegram_id="1")) == "друг"


def test_create_and_schedule(db):
    draft = broadcast_service.create_broadcast(session=db, title="t", message="m")
    assert draft.status == BroadcastStatus.draft
    assert draft.scheduled_at is None

    scheduled = broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)
    assert scheduled.status == BroadcastStatus.scheduled

    with pytest.raises(AppError) as exc:
        broadcast_service.schedule_broadcast(session=db, broadcast_id=scheduled.id)
    assert exc.value.status_code == 400

    updated = broadcast_service.schedule_broadcast(session=db, broadcast_id=draft.id, now=NOW)
    assert updated.status == BroadcastStatus.scheduled
    assert updated.scheduled_at is not None

    with pytest.raises(AppError) as exc:
        broadcast_service.get_broadcast(session=db, broadcast_id=1)
    assert exc.value.status_code == 404


def test_process_sends_to_everyone_and_records_logs(db, make_user, fake_telegram):
    make_user(telegram_id="60001", first_name="Anna")
    make_user(telegram_id="60002", first_name=None, username="boris")
    make_user(telegram_id="60003", first_name="Vera")
    fake_telegram.fail_for.add("60003")
    pauses: list[float] = []

    broadcast = broadcast_service.create_broadcast(
        session=db,
        title="Новинка",
        message="Привет, {name}! {link}",
        scheduled_at=NOW - timedelta(minutes=1),
    )
    done = broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=pauses.append)

    assert done is not None and done.id == broadcast.id
    assert done.status == BroadcastStatus.sent
    assert (done.total_count, done.sent_count, done.failed_count) == (3, 2, 1)
    assert [m["text"] for m in fake_telegram.sent] == [
        f"Привет, Anna! {settings.BOT_LINK}",
        f"Привет, boris! {settings.BOT_LINK}",
    ]

    logs = {log.telegram_id: log for log in _logs(db, broadcast.id)}
    assert logs["60001"].status == DeliveryStatus.sent
    assert logs["60003"].status == DeliveryStatus.failed
    assert "blocked" in logs["60003"].error_message

    # Already sent: a second run finds nothing due.
    assert broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=pauses.append) is None


def test_process_delays_between_recipients(db, make_user, fake_telegram, monkeypatch):
    monkeypatch.setattr(settings, "BROADCAST_SEND_DELAY_MS", 40)
    make_user(telegram_id="61001")
    make_user(telegram_id="61002")
    make_user(telegram_id="61003")
    pauses: list[float] = []
    broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)

    broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=pauses.append)
    assert pauses == [0.04, 0.04]


def test_photo_broadcast_to_paid_users_only(db, make_user, fake_telegram):
    paid = make_user(telegram_id="62001")
    expired = make_user(telegram_id="62002")
    make_user(telegram_id="62003")
    _grant_paid_access(db, paid, valid_until=NOW + timedelta(days=3))
    _grant_paid_access(db, expired, valid_until=NOW - timedelta(days=3))

    broadcast_service.create_broadcast(
        session=db,
        title="t",
        message="Только для вас",
        scheduled_at=NOW,
        image_url="https://cdn.example.com/promo.png",
        buttons=[{"text": "Открыть", "url": "https://example.com"}],
        send_to_all=False,
    )
    done = broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=lambda _: None)

    assert done.total_count == 1
    assert fake_telegram.sent == [
        {
            "method": "sendPhoto",
            "chat_id": "62001",
            "photo_url": "https://cdn.example.com/promo.png",
            "caption": "Только для вас",
            "buttons": [{"text": "Открыть", "url": "https://example.com"}],
        }
    ]


def test_no_recipients_marks_failed(db, fake_telegram):
    broadcast = broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)
    done = broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=lambda _: None)
    assert done.id == broadcast.id
    assert done.status == BroadcastStatus.failed
    assert done.total_count == 0


def test_future_and_draft_broadcasts_are_not_processed(db, make_user, fake_telegram):
    make_user()
    broadcast_service.create_broadcast(session=db, title="draft", message="m")
    broadcast_service.create_broadcast(
        session=db, title="later", message="m", scheduled_at=NOW + timedelta(hours=1)
    )
    assert broadcast_service.process_due_broadcast(session=db, now=NOW) is None
    assert fake_telegram.sent == []


def test_process_requires_bot_token(db, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)
    with pytest.raises(AppError) as exc:
        broadcast_service.process_due_broadcast(session=db, now=NOW)
    assert exc.value.status_code == 500


def test_admin_broadcast_endpoints(client, db, make_user, fake_telegram):
    make_user(telegram_id="63001", first_name="Anna")
    headers = admin_headers()

    assert client.post("/api/v1/admin/broadcasts", json={"title": "t", "message": "m"}).status_code == 401

    r = client.post(
        "/api/v1/admin/broadcasts",
        json={"title": "Акция", "message": "Привет, {name}!", "buttons": [{"text": "Go", "url": "https://x.io"}]},
        headers=headers,
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "draft"
    assert data["sendToAll"] is True
    broadcast_id = data["id"]

    r = client.get("/api/v1/admin/broadcasts", headers=headers)
    assert [b["id"] for b in r.json()["data"]["broadcasts"]] == [broadcast_id]

    r = client.post(f"/api/v1/admin/broadcasts/{broadcast_id}/schedule", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "scheduled"

    r = client.post(f"/api/v1/admin/broadcasts/{broadcast_id}/schedule", headers=headers)
    assert r.status_code == 400

    r = client.post("/api/v1/admin/broadcasts/worker", headers=headers)
    assert r.status_code == 200
    result = r.json()["data"]
    assert result["processed"] is True
    assert result["broadcast"]["status"] == "sent"
    assert result["broadcast"]["sentCount"] == 1
    assert fake_telegram.sent[0]["text"] == "Привет, Anna!"

    r = client.get(f"/api/v1/admin/broadcasts/{broadcast_id}", headers=headers)
    assert r.json()["data"]["sentAt"] is not None

    r = client.post("/api/v1/admin/broadcasts/worker", headers=headers)
    assert r.json()["data"] == {"processed": False, "broadcast": None}


def test_worker_auth(client, db, monkeypatch):
    url = "/api/v1/admin/broadcasts/worker"

    assert client.post(url).status_code == 401
    assert client.post(url, headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.post(url, params={"secret": "wrong"}).status_code == 401

    r = client.post(url, headers={"Authorization": f"Bearer {settings.CRON_SECRET}"})
    assert r.status_code == 200
    assert r.json()["data"]["processed"] is False
    assert client.post(url, params={"secret": settings.CRON_SECRET}).status_code == 200

    monkeypatch.setattr(settings, "CRON_SECRET", None)
    assert client.post(url).status_code == 500
    # An admin token still works without a cron secret.
    assert client.post(url, headers=admin_headers()).status_code == 200


def test_scheduled_broadcast_row_is_claimed_once(db, make_user, fake_telegram):
    make_user()
    broadcast = broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)
    # Simulates another worker having claimed the row already.
    row = db.get(BroadcastMessage, broadcast.id)
    row.sent_at = NOW
    db.add(row)
    db.commit()

    assert broadcast_service.process_due_broadcast(session=db, now=NOW) is None
    assert fake_telegram.sent == []


def test_unexpected_error_marks_broadcast_failed(db, make_user, fake_telegram, monkeypatch):
    make_user(telegram_id="61001")
    make_user(telegram_id="61002")
    make_user(telegram_id="61003")
    broadcast = broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)

    def send_message(*, chat_id, text, **kwargs):  # type: ignore[no-untyped-def]
        if str(chat_id) == "61002":
            raise RuntimeError("connection reset")
        return fake_telegram.send_message(chat_id=chat_id, text=text, **kwargs)

    monkeypatch.setattr(broadcast_service.telegram_client, "send_message", send_message)

    with pytest.raises(RuntimeError):
        broadcast_service.process_due_broadcast(session=db, now=NOW, sleep=lambda _: None)

    row = db.get(BroadcastMessage, broadcast.id, populate_existing=True)
    assert row.status == BroadcastStatus.failed
    assert row.sent_at is not None
    assert (row.total_count, row.sent_count, row.failed_count) == (3, 1, 0)
    assert [log.telegram_id for log in _logs(db, broadcast.id)] == ["61001"]

    # A failed row is never picked up again.
    assert broadcast_service.process_due_broadcast(session=db, now=NOW + timedelta(hours=1)) is None
    assert len(fake_telegram.sent) == 1


def test_interrupted_claim_is_failed_not_resent(db, make_user, fake_telegram):
    make_user()
    broadcast = broadcast_service.create_broadcast(session=db, title="t", message="m", scheduled_at=NOW)
    # The worker claimed the row and was killed before finishing.
    row = db.get(BroadcastMessage, broadcast.id)
    row.sent_at = NOW
    db.add(row)
    db.commit()

    later = NOW + timedelta(seconds=settings.BROADCAST_CLAIM_TIMEOUT_SECONDS - 1)
    assert broadcast_service.process_due_broadcast(session=db, now=later) is None
    assert db.get(BroadcastMessage, broadcast.id, populate_existing=True).status == BroadcastStatus.scheduled

    later = NOW + timedelta(seconds=settings.BROADCAST_CLAIM_TIMEOUT_SECONDS + 1)
    assert broadcast_service.process_due_broadcast(session=db, now=later) is None
    assert db.get(BroadcastMessage, broadcast.id, populate_existing=True).status == BroadcastStatus.failed
    assert fake_telegram.sent == []
