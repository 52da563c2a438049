"""Notification sending, batching, stored broadcasts and the webhook."""

from __future__ import annotations

import base64
import json

import pytest

import chain
import notifications
from errors import ConflictError, NotFoundError
from extensions import db
from models_push import NotificationToken
from notifications import (
    NotificationDetails,
    SendResult,
    broadcast,
    create_global_notification,
    send_frame_notification,
    send_global_notification_by_id,
    send_to_one,
    store_notification_details,
)

DETAILS = NotificationDetails(token="tok", url="https://client.test/notify")


def _respond(monkeypatch, status, body):
    monkeypatch.setattr(notifications, "_post_json", lambda url, payload, timeout=10: (status, body))


def test_send_posts_expected_payload(app_ctx, sent):
    result = send_frame_notification(DETAILS, "Hi", "There")
    assert result.state == "success"
    url, payload = sent[0]
    assert url == DETAILS.url
    assert payload["title"] == "Hi"
    assert payload["body"] == "There"
    assert payload["targetUrl"] == "https://example.test"
    assert payload["tokens"] == ["tok"]
    assert payload["notificationId"]


@pytest.mark.parametrize(
    "status,body,state,invalid",
    [
        (200, {"result": {"rateLimitedTokens": ["tok"]}}, "rate_limited", False),
        (200, {"result": {"invalidTokens": ["tok"]}}, "error", True),
        (200, {"unexpected": True}, "error", False),
        (200, None, "error", False),
        (500, None, "error", False),
    ],
)
def test_send_result_states(app_ctx, monkeypatch, status, body, state, invalid):
    _respond(monkeypatch, status, body)
    result = send_frame_notification(DETAILS, "t", "b")
    assert result.state == state
    assert result.invalid_token is invalid


def test_send_to_one_without_token(app_ctx, sent):
    assert send_to_one("123", "t", "b").state == "no_token"
    assert sent == []


def test_send_to_one_prunes_invalid_token(app_ctx, monkeypatch):
    store_notification_details("123", "tok", "https://client.test/notify", fid=123)
    _respond(monkeypatch, 200, {"result": {"invalidTokens": ["tok"]}})
    assert send_to_one("123", "t", "b").state == "error"
    assert NotificationToken.query.count() == 0


def test_broadcast_batches_of_ten(app_ctx):
    for i in range(25):
        store_notification_details(str(i), f"tok{i}", "https://client.test/notify", fid=i)

    calls = []
    sleeps = []

    def sender(details, title, body):
        calls.append(details.token)
        return SendResult("success")

    result = broadcast("t", "b", batch_size=10, delay=1.5, sender=sender, sleep=sleeps.append)

    assert result.batches == 3
    assert result.successful == 25
    assert result.total == 25
    assert sorted(calls) == sorted(f"tok{i}" for i in range(25))
    # Between batches only.
    assert sleeps == [1.5, 1.5]


def test_broadcast_counts_every_outcome(app_ctx):
    store_notification_details("a", "ok", "u")
    store_notification_details("b", "limited", "u")
    store_notification_details("c", "bad", "u")
    outcomes = {
        "ok": SendResult("success"),
        "limited": SendResult("rate_limited"),
        "bad": SendResult("error", invalid_token=True),
    }

    result = broadcast("t", "b", recipients=["a", "b", "c", "ghost"], sender=lambda d, t, b: outcomes[d.token], sleep=lambda s: None)

    assert (result.successful, result.rate_limited, result.failed, result.no_token) == (1, 1, 1, 1)
    assert {r.user_key for r in NotificationToken.query.all()} == {"a", "b"}


def test_stored_broadcast_sends_once(app_ctx, sent):
    store_notification_details("1", "tok1", "https://client.test/notify")
    row = create_global_notification("News", "Body", targets=["1", "2"])

    result = send_global_notification_by_id(row.id)
    assert (result.successful, result.no_token) == (1, 1)
    assert row.status == "sent"
    assert row.sent_at is not None

    with pytest.raises(ConflictError) as exc:
        send_global_notification_by_id(row.id)
    assert exc.value.reason == "already_sent"
    with pytest.raises(NotFoundError):
        send_global_notification_by_id(9999)


# -------------------------------
# Webhook
# -------------------------------
def _b64(obj):
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")


def _webhook_body(event, fid=77, details=None):
    payload = {"event": event}
    if details:
        payload["notificationDetails"] = details
    return {"header": _b64({"fid": fid, "type": "app_key", "key": "0x" + "aa" * 32}), "payload": _b64(payload), "signature": "sig"}


NOTIFY_DETAILS = {"token": "wh-token", "url": "https://client.test/notify"}


def test_webhook_rejects_unverified_sender(client, monkeypatch, sent):
    monkeypatch.setattr(chain, "verify_fid_ownership", lambda fid, key: False)
    resp = client.post("/api/webhook", json=_webhook_body("frame_added", details=NOTIFY_DETAILS))
    assert resp.status_code == 401
    assert NotificationToken.query.count() == 0
    assert sent == []


def test_webhook_frame_added_stores_and_welcomes(client, monkeypatch, sent):
    monkeypatch.setattr(chain, "verify_fid_ownership", lambda fid, key: True)
    resp = client.post("/api/webhook", json=_webhook_body("frame_added", details=NOTIFY_DETAILS))
    assert resp.status_code == 200

    row = db.session.get(NotificationToken, "77")
    assert row.token == "wh-token"
    assert row.fid == 77
    assert sent[0][1]["title"].startswith("Welcome to ")


def test_webhook_removal_events_delete_token(client, monkeypatch, sent):
    monkeypatch.setattr(chain, "verify_fid_ownership", lambda fid, key: True)
    store_notification_details("77", "tok", "u", fid=77)
    assert client.post("/api/webhook", json=_webhook_body("notifications_disabled")).status_code == 200
    assert NotificationToken.query.count() == 0

    store_notification_details("77", "tok", "u", fid=77)
    assert client.post("/api/webhook", json=_webhook_body("frame_removed")).status_code == 200
    assert NotificationToken.query.count() == 0


def test_webhook_validates_input(client, monkeypatch):
    monkeypatch.setattr(chain, "verify_fid_ownership", lambda fid, key: True)
    assert client.post("/api/webhook", json={}).status_code == 400
    assert client.post("/api/webhook", json={"header": "!!!", "payload": "x"}).status_code == 400
    assert client.post("/api/webhook", json=_webhook_body("something_else")).status_code == 400
    body = _webhook_body("frame_added")
    body["header"] = _b64({"key": "0x1"})
    assert client.post("/api/webhook", json=body).status_code == 400
