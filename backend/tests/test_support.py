from __future__ import annotations

import pytest
from conftest import admin_headers

from skiniq.api.errors import AppError
from skiniq.core.config import settings
from skiniq.enums import SupportChatStatus
from skiniq.models import SupportChat, SupportMessage
from skiniq.services import support as support_service


def _chat(db, user, **kwargs) -> SupportChat:
    chat = SupportChat(user_id=user.id, **kwargs)
    db.add(chat)
    db.commit()
    db.refresh(chat)
    return chat


def _reload(db, chat_id: int) -> SupportChat:
    return db.get(SupportChat, chat_id, populate_existing=True)


def test_first_message_opens_chat_and_auto_replies_once(db, make_user):
    user = make_user()

    first = support_service.record_incoming_message(session=db, user=user, text="Привет")
    assert first.auto_reply == settings.SUPPORT_AUTO_REPLY_TEXT
    assert first.chat.status == SupportChatStatus.active
    assert first.chat.unread == 1
    assert first.chat.auto_reply_sent is True

    second = support_service.record_incoming_message(session=db, user=user, text="Есть кто?")
    assert second.auto_reply is None
    assert second.chat.id == first.chat.id
    assert second.chat.unread == 2
    assert second.chat.last_message == "Есть кто?"


def test_close_resets_auto_reply_and_reopen(db, make_user):
    user = make_user()
    chat_id = support_service.record_incoming_message(session=db, user=user, text="hi").chat.id

    closed = support_service.close_chat(session=db, chat_id=chat_id)
    assert closed.status == SupportChatStatus.closed
    assert closed.auto_reply_sent is False

    reopened = support_service.record_incoming_message(session=db, user=user, text="again")
    assert reopened.chat.id == chat_id
    assert reopened.chat.status == SupportChatStatus.active
    assert reopened.auto_reply == settings.SUPPORT_AUTO_REPLY_TEXT


def test_set_status_closed_clears_auto_reply(db, make_user):
    chat = _chat(db, make_user(), status=SupportChatStatus.in_progress, auto_reply_sent=True)
    updated = support_service.set_status(session=db, chat_id=chat.id, status="closed")
    assert updated.auto_reply_sent is False


def test_invalid_status_leaves_chat_unchanged(db, make_user):
    chat = _chat(db, make_user(), status=SupportChatStatus.in_progress, auto_reply_sent=True)
    with pytest.raises(AppError) as exc:
        support_service.set_status(session=db, chat_id=chat.id, status="archived")
    assert exc.value.status_code == 400

    after = _reload(db, chat.id)
    assert after.status == SupportChatStatus.in_progress
    assert after.auto_reply_sent is True


def test_unknown_chat_is_not_found(db):
    with pytest.raises(AppError) as exc:
        support_service.close_chat(session=db, chat_id=404)
    assert exc.value.status_code == 404


def test_list_messages_returns_latest_oldest_first_and_resets_unread(db, make_user):
    chat = _chat(db, make_user(), unread=5)
    for i in range(7):
        db.add(SupportMessage(chat_id=chat.id, text=f"m{i}"))
        db.commit()

    messages = support_service.list_messages(session=db, chat_id=chat.id, limit=3)
    assert [m.text for m in messages] == ["m4", "m5", "m6"]
    assert _reload(db, chat.id).unread == 0


def test_message_window_is_capped(client, db, make_user, monkeypatch):
    monkeypatch.setattr(settings, "SUPPORT_MESSAGES_LIMIT", 5)
    chat = _chat(db, make_user())
    for i in range(8):
        db.add(SupportMessage(chat_id=chat.id, text=f"m{i}"))
        db.commit()

    messages = support_service.list_messages(session=db, chat_id=chat.id, limit=500)
    assert [m.text for m in messages] == ["m3", "m4", "m5", "m6", "m7"]

    r = client.get(f"/api/v1/admin/support/messages?chatId={chat.id}&limit=500", headers=admin_headers())
    assert r.status_code == 200
    assert [m["text"] for m in r.json()["data"]["messages"]] == ["m3", "m4", "m5", "m6", "m7"]


def test_admin_support_endpoints(client, db, make_user, fake_telegram):
    user = make_user(telegram_id="30003", first_name="Olga", last_name="K")
    chat_id = support_service.record_incoming_message(session=db, user=user, text="help").chat.id
    other = make_user(telegram_id="30004")
    closed_id = _chat(db, other, status=SupportChatStatus.closed).id
    headers = admin_headers()

    assert client.get("/api/v1/admin/support/chats").status_code == 401

    r = client.get("/api/v1/admin/support/chats", headers=headers)
    assert r.status_code == 200
    chats = r.json()["data"]["chats"]
    assert [c["id"] for c in chats] == [str(chat_id)]
    assert chats[0]["name"] == "Olga K"
    assert chats[0]["unread"] == 1
    assert str(closed_id) not in [c["id"] for c in chats]

    r = client.get(f"/api/v1/admin/support/messages?chatId={chat_id}", headers=headers)
    assert r.status_code == 200
    messages = r.json()["data"]["messages"]
    assert [(m["text"], m["isAdmin"]) for m in messages] == [("help", False)]
    assert set(messages[0]) == {"id", "text", "isAdmin", "createdAt"}
    assert _reload(db, chat_id).unread == 0

    r = client.post("/api/v1/admin/support/send", json={"chatId": str(chat_id), "text": "Здравствуйте!"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["delivered"] is True
    assert fake_telegram.sent[-1] == {"method": "sendMessage", "chat_id": "30003", "text": "Здравствуйте!"}
    chat = _reload(db, chat_id)
    assert chat.status == SupportChatStatus.in_progress
    assert chat.last_message == "Здравствуйте!"

    r = client.put("/api/v1/admin/support/status", json={"chatId": chat_id, "status": "bogus"}, headers=headers)
    assert r.status_code == 400
    assert _reload(db, chat_id).status == SupportChatStatus.in_progress

    r = client.put("/api/v1/admin/support/status", json={"chatId": chat_id}, headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == 400000
    assert r.json()["message"] == "status: Field required"

    r = client.put("/api/v1/admin/support/status", json={"chatId": chat_id, "status": "active"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "active"

    r = client.post("/api/v1/admin/support/close", json={"chatId": chat_id}, headers=headers)
    assert r.status_code == 200
    assert _reload(db, chat_id).auto_reply_sent is False

    r = client.get("/api/v1/admin/support/messages?chatId=1", headers=headers)
    assert r.status_code == 404


def test_admin_send_delivery_failure_keeps_message(client, db, make_user, fake_telegram):
    user = make_user(telegram_id="30005")
    chat_id = support_service.record_incoming_message(session=db, user=user, text="?").chat.id
    fake_telegram.fail_for.add("30005")

    r = client.post("/api/v1/admin/support/send", json={"chatId": chat_id, "text": "ok"}, headers=admin_headers())
    assert r.status_code == 200
    assert r.json()["data"]["delivered"] is False
    assert _reload(db, chat_id).last_message == "ok"


def test_admin_send_without_bot_token(client, db, make_user, monkeypatch):
    user = make_user()
    chat_id = support_service.record_incoming_message(session=db, user=user, text="?").chat.id
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)
    r = client.post("/api/v1/admin/support/send", json={"chatId": chat_id, "text": "ok"}, headers=admin_headers())
    assert r.status_code == 500
    assert r.json()["code"] == 500001


def test_telegram_webhook_records_messages(client, db, fake_telegram, monkeypatch):
    update = {
        "update_id": 1,
        "message": {
            "message_id": 10,
            "from": {"id": 40001, "first_name": "Petr"},
            "chat": {"id": 40001, "type": "private"},
            "text": "Не могу оплатить",
        },
    }
    r = client.post("/api/v1/telegram/webhook", json=update)
    assert r.status_code == 200
    assert r.json()["data"]["handled"] is True
    assert fake_telegram.sent[-1]["text"] == settings.SUPPORT_AUTO_REPLY_TEXT

    r = client.post("/api/v1/telegram/webhook", json=update)
    assert len(fake_telegram.sent) == 1

    r = client.post("/api/v1/telegram/webhook", json={"update_id": 2, "edited_message": {}})
    assert r.json()["data"]["handled"] is False

    start = {**update, "message": {**update["message"], "text": "/start"}}
    client.post("/api/v1/telegram/webhook", json=start)
    assert "web_app_url" in fake_telegram.sent[-1]

    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "tg-secret")
    assert client.post("/api/v1/telegram/webhook", json=update).status_code == 401
    r = client.post(
        "/api/v1/telegram/webhook",
        json=update,
        headers={"X-Telegram-Bot-Api-Secret-Token": "tg-secret"},
    )
    assert r.status_code == 200
