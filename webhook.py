"""Farcaster mini-app lifecycle webhook.

POST /api/webhook  {header, payload, signature}

header and payload are base64url JSON. The sender (header.fid / header.key)
must hold an active app key in the Key Registry before anything is written.
"""

import base64
import binascii
import json
import os

from flask import Blueprint, current_app, jsonify, request

import chain
from errors import UnauthorizedError, ValidationError
from extensions import limiter
from notifications import delete_notification_details, send_to_one, store_notification_details


webhook_api = Blueprint("webhook_api", __name__)

EVENT_FRAME_ADDED = "frame_added"
EVENT_FRAME_REMOVED = "frame_removed"
EVENT_NOTIFICATIONS_ENABLED = "notifications_enabled"
EVENT_NOTIFICATIONS_DISABLED = "notifications_disabled"

EVENTS = (EVENT_FRAME_ADDED, EVENT_FRAME_REMOVED, EVENT_NOTIFICATIONS_ENABLED, EVENT_NOTIFICATIONS_DISABLED)


def _app_name() -> str:
    return os.getenv("APP_NAME", "Blue Square")


def _decode_part(value, name) -> dict:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Missing {name}")
    try:
        raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
        decoded = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise ValidationError(f"Invalid {name} encoding")
    if not isinstance(decoded, dict):
        raise ValidationError(f"Invalid {name}")
    return decoded


def _notification_details(event: dict):
    details = event.get("notificationDetails")
    if details is None:
        return None
    if not isinstance(details, dict) or not details.get("token") or not details.get("url"):
        raise ValidationError("notificationDetails needs token and url")
    return details


def _best_effort_send(fid, title, body):
    try:
        send_to_one(str(fid), title, body)
    except Exception:
        current_app.logger.exception("webhook notification to fid %s failed", fid)


@webhook_api.post("/api/webhook")
@limiter.limit("60 per minute")
def webhook():
    data = request.get_json(silent=True) or {}
    header = _decode_part(data.get("header"), "header")
    event = _decode_part(data.get("payload"), "payload")

    fid = header.get("fid")
    key = header.get("key")
    if fid is None or not key:
        raise ValidationError("header needs fid and key")
    try:
        fid = int(fid)
    except (TypeError, ValueError):
        raise ValidationError("header.fid must be an integer")

    kind = event.get("event")
    if kind not in EVENTS:
        raise ValidationError(f"Unknown event type: {kind}")
    details = _notification_details(event)

    if not chain.verify_fid_ownership(fid, str(key)):
        raise UnauthorizedError("Invalid FID ownership", reason="invalid_fid_ownership")

    current_app.logger.info("webhook event %s for fid %s", kind, fid)
    app_name = _app_name()

    if kind == EVENT_FRAME_ADDED:
        if details:
            store_notification_details(str(fid), details["token"], details["url"], fid=fid)
            _best_effort_send(
                fid,
                f"Welcome to {app_name}! 🎉",
                f"Thank you for adding {app_name}! Complete quests to earn rewards on Base.",
            )
        else:
            delete_notification_details(str(fid))
    elif kind == EVENT_NOTIFICATIONS_ENABLED:
        if details:
            store_notification_details(str(fid), details["token"], details["url"], fid=fid)
            _best_effort_send(
                fid,
                f"{app_name} notifications enabled! 🔔",
                "You'll now receive updates about new quests and rewards!",
            )
    else:
        # frame_removed, notifications_disabled
        delete_notification_details(str(fid))

    return jsonify({"success": True})
