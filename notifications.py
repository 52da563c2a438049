"""Farcaster frame notifications.

Tokens arrive through the webhook (keyed by FID) or PUT /api/notification.
A send is a plain JSON POST to the token's url; broadcasts go out in batches
with a pause in between so the client's rate limit is not tripped.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from flask import current_app

from errors import ConflictError, NotFoundError
from extensions import db
from models_push import (
    GLOBAL_NOTIFICATION_PENDING,
    GLOBAL_NOTIFICATION_SENT,
    GlobalNotification,
    NotificationToken,
)


SEND_SUCCESS = "success"
SEND_ERROR = "error"
SEND_RATE_LIMITED = "rate_limited"
SEND_NO_TOKEN = "no_token"


def _app_url() -> str:
    return os.getenv("APP_URL", "https://blue-square.vercel.app").strip()


def _batch_size() -> int:
    return max(1, int(os.getenv("NOTIFICATION_BATCH_SIZE", "10")))


def _batch_delay() -> float:
    return float(os.getenv("NOTIFICATION_BATCH_DELAY_SECONDS", "1.0"))


@dataclass(frozen=True)
class NotificationDetails:
    token: str
    url: str


@dataclass
class SendResult:
    state: str
    invalid_token: bool = False
    error: str | None = None


@dataclass
class BroadcastResult:
    successful: int = 0
    failed: int = 0
    rate_limited: int = 0
    no_token: int = 0
    total: int = 0
    batches: int = 0
    invalid_tokens: list[str] = field(default_factory=list)

    def count(self, state: str) -> None:
        if state == SEND_SUCCESS:
            self.successful += 1
        elif state == SEND_RATE_LIMITED:
            self.rate_limited += 1
        elif state == SEND_NO_TOKEN:
            self.no_token += 1
        else:
            self.failed += 1

    def to_dict(self):
        return {
            "successful": self.successful,
            "failed": self.failed,
            "rate_limited": self.rate_limited,
            "no_token": self.no_token,
            "total": self.total,
            "batches": self.batches,
        }


# -------------------------------
# Token store
# -------------------------------
def store_notification_details(user_key, token: str, url: str, fid: int | None = None) -> NotificationToken:
    user_key = str(user_key)
    row = db.session.get(NotificationToken, user_key)
    if row is None:
        row = NotificationToken(user_key=user_key)
        db.session.add(row)
    row.token = token
    row.url = url
    row.fid = fid
    row.added_at = datetime.utcnow()
    db.session.commit()
    return row


def get_notification_details(user_key) -> NotificationDetails | None:
    row = db.session.get(NotificationToken, str(user_key))
    if row is None:
        return None
    return NotificationDetails(token=row.token, url=row.url)


def delete_notification_details(user_key) -> bool:
    row = db.session.get(NotificationToken, str(user_key))
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def list_notification_recipients() -> list[str]:
    return [r.user_key for r in NotificationToken.query.order_by(NotificationToken.added_at.asc()).all()]


# -------------------------------
# Sending
# -------------------------------
def _post_json(url: str, payload: dict, timeout: int = 10):
    """POST JSON; return (status, parsed body or None)."""
    data = json.dumps(payload).encode("utf-8")
    req = urlrequest.Request(url, data=data, headers={"Content-Type": "application/json"}, method="POST")
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
            status = resp.status
    except HTTPError as e:
        return e.code, None
    try:
        return status, json.loads(raw)
    except ValueError:
        return status, None


def send_frame_notification(details: NotificationDetails, title: str, body: str) -> SendResult:
    """Send one notification. Safe to call from worker threads (no db access)."""
    payload = {
        "notificationId": str(uuid.uuid4()),
        "title": title,
        "body": body,
        "targetUrl": _app_url(),
        "tokens": [details.token],
    }
    try:
        status, resp = _post_json(details.url, payload)
    except (URLError, TimeoutError, OSError) as e:
        return SendResult(SEND_ERROR, error=str(e))

    if status != 200:
        return SendResult(SEND_ERROR, error=f"HTTP {status}")
    if not isinstance(resp, dict) or not isinstance(resp.get("result"), dict):
        return SendResult(SEND_ERROR, error="malformed response")

    result = resp["result"]
    if result.get("rateLimitedTokens"):
        return SendResult(SEND_RATE_LIMITED)
    if details.token in (result.get("invalidTokens") or []):
        return SendResult(SEND_ERROR, invalid_token=True, error="invalid token")
    return SendResult(SEND_SUCCESS)


def send_to_one(user_key, title: str, body: str, details: NotificationDetails | None = None) -> SendResult:
    details = details or get_notification_details(user_key)
    if details is None:
        return SendResult(SEND_NO_TOKEN)
    result = send_frame_notification(details, title, body)
    if result.invalid_token:
        delete_notification_details(user_key)
    if result.state != SEND_SUCCESS:
        current_app.logger.warning("notification to %s: %s (%s)", user_key, result.state, result.error)
    return result


def broadcast(title, body, recipients=None, batch_size=None, delay=None, sender=None, sleep=time.sleep) -> BroadcastResult:
    sender = sender or send_frame_notification
    batch_size = batch_size or _batch_size()
    delay = _batch_delay() if delay is None else delay

    keys = [str(k) for k in recipients] if recipients is not None else list_notification_recipients()
    rows = NotificationToken.query.filter(NotificationToken.user_key.in_(keys)).all() if keys else []
    tokens = {r.user_key: NotificationDetails(token=r.token, url=r.url) for r in rows}

    result = BroadcastResult(total=len(keys))
    batches = [keys[i:i + batch_size] for i in range(0, len(keys), batch_size)]

    for n, batch in enumerate(batches):
        result.batches += 1
        to_send = []
        for key in batch:
            if key in tokens:
                to_send.append(key)
            else:
                result.count(SEND_NO_TOKEN)

        if to_send:
            with ThreadPoolExecutor(max_workers=len(to_send)) as pool:
                futures = {key: pool.submit(sender, tokens[key], title, body) for key in to_send}
                for key, fut in futures.items():
                    try:
                        res = fut.result()
                    except Exception as e:
                        res = SendResult(SEND_ERROR, error=str(e))
                    result.count(res.state)
                    if res.invalid_token:
                        result.invalid_tokens.append(key)

        if n < len(batches) - 1 and delay > 0:
            sleep(delay)

    for key in result.invalid_tokens:
        delete_notification_details(key)

    current_app.logger.info("Broadcast %r: %s", title, result.to_dict())
    return result


def notify_new_quest(quest) -> BroadcastResult:
    reward_points = quest.reward_points or 0
    return broadcast("New Quest Available! 🎯", f'"{quest.title}" is live. Complete it to earn {reward_points} points!')


def notify_new_reward(reward) -> BroadcastResult:
    return broadcast("New Reward Available! 🎁", f'A new reward "{reward.name}" has been added. Claim it now!')


# -------------------------------
# Stored broadcasts
# -------------------------------
def create_global_notification(title: str, body: str, targets=None) -> GlobalNotification:
    row = GlobalNotification(
        title=title,
        body=body,
        target_users=[str(t) for t in targets] if targets is not None else None,
        status=GLOBAL_NOTIFICATION_PENDING,
    )
    db.session.add(row)
    db.session.commit()
    return row


def send_global_notification_by_id(notification_id, **kwargs) -> BroadcastResult:
    row = db.session.get(GlobalNotification, notification_id)
    if row is None:
        raise NotFoundError("Notification not found")
    if row.status == GLOBAL_NOTIFICATION_SENT:
        raise ConflictError("Notification already sent", reason="already_sent")

    result = broadcast(row.title, row.body, recipients=row.target_users, **kwargs)

    row.status = GLOBAL_NOTIFICATION_SENT
    row.sent_at = datetime.utcnow()
    row.successful = result.successful
    row.failed = result.failed
    row.rate_limited = result.rate_limited
    row.no_token = result.no_token
    db.session.commit()
    return result


def list_global_notifications() -> list[GlobalNotification]:
    return GlobalNotification.query.order_by(GlobalNotification.created_at.desc()).all()


def list_pending_global_notifications() -> list[GlobalNotification]:
    return (
        GlobalNotification.query.filter_by(status=GLOBAL_NOTIFICATION_PENDING)
        .order_by(GlobalNotification.created_at.asc())
        .all()
    )
