"""Notification APIs.

Routes:
- PUT  /api/notification             store a user's notification details
- POST /api/notification             admin: send to one stored user
- POST /api/notify                   admin: single (by fid) or broadcast
- POST /api/notifications/global     admin: store (and optionally send) a broadcast
- GET  /api/notifications/global     admin: list stored broadcasts
- POST /api/notifications/send       admin: send a stored broadcast
"""

from flask import Blueprint, jsonify, request

from admin_auth import require_admin
from errors import ValidationError
from extensions import limiter
from notifications import (
    SEND_NO_TOKEN,
    SEND_SUCCESS,
    NotificationDetails,
    broadcast,
    create_global_notification,
    list_global_notifications,
    send_global_notification_by_id,
    send_to_one,
    store_notification_details,
)


notifications_api = Blueprint("notifications_api", __name__)


def _title_body(data):
    title = (data.get("title") or "").strip()
    body = (data.get("body") or "").strip()
    if not title or not body:
        raise ValidationError("title and body are required")
    return title, body


def _single_response(result):
    if result.state == SEND_SUCCESS:
        return jsonify({"success": True, "state": result.state})
    status = 404 if result.state == SEND_NO_TOKEN else 502
    return jsonify({"success": False, "state": result.state, "error": result.error or result.state}), status


@notifications_api.put("/api/notification")
@limiter.limit("30 per minute")
def save_notification_details():
    data = request.get_json(silent=True) or {}
    user_id = str(data.get("user_id") or "").strip().lower()
    token = (data.get("token") or "").strip()
    url = (data.get("url") or "").strip()
    if not user_id or not token or not url:
        raise ValidationError("user_id, token and url are required")
    fid = data.get("fid")
    try:
        fid = int(fid) if fid not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("fid must be an integer")

    store_notification_details(user_id, token, url, fid=fid)
    return jsonify({"success": True})


@notifications_api.post("/api/notification")
@require_admin
def send_single_notification():
    data = request.get_json(silent=True) or {}
    title, body = _title_body(data)
    user_id = str(data.get("user_id") or "").strip().lower()
    if not user_id:
        raise ValidationError("user_id is required")
    return _single_response(send_to_one(user_id, title, body))


@notifications_api.post("/api/notify")
@require_admin
def notify():
    data = request.get_json(silent=True) or {}
    kind = (data.get("type") or "").strip()
    notification = data.get("notification") or {}
    if not isinstance(notification, dict):
        raise ValidationError("notification must be an object")
    title, body = _title_body(notification)

    if kind == "single":
        fid = data.get("fid")
        if fid in (None, ""):
            raise ValidationError("fid is required for single notifications")
        details = notification.get("notification_details")
        if details is not None:
            if not isinstance(details, dict) or not details.get("token") or not details.get("url"):
                raise ValidationError("notification_details needs token and url")
            details = NotificationDetails(token=details["token"], url=details["url"])
        return _single_response(send_to_one(str(fid), title, body, details=details))

    if kind == "broadcast":
        fids = data.get("user_fids")
        if fids is not None and not isinstance(fids, list):
            raise ValidationError("user_fids must be a list")
        result = broadcast(title, body, recipients=fids)
        return jsonify({"success": True, "results": result.to_dict()})

    raise ValidationError("type must be single or broadcast")


@notifications_api.post("/api/notifications/global")
@require_admin
def create_global():
    data = request.get_json(silent=True) or {}
    title, body = _title_body(data)
    targets = data.get("target_users")
    if targets is not None and not isinstance(targets, list):
        raise ValidationError("target_users must be a list")

    row = create_global_notification(title, body, targets)
    out = {"success": True, "notification": row.to_dict()}
    if data.get("send_immediately"):
        out["results"] = send_global_notification_by_id(row.id).to_dict()
        out["notification"] = row.to_dict()
    return jsonify(out)


@notifications_api.get("/api/notifications/global")
@require_admin
def list_global():
    return jsonify({"success": True, "notifications": [n.to_dict() for n in list_global_notifications()]})


@notifications_api.post("/api/notifications/send")
@require_admin
def send_global():
    data = request.get_json(silent=True) or {}
    notification_id = data.get("notification_id")
    try:
        notification_id = int(notification_id)
    except (TypeError, ValueError):
        raise ValidationError("notification_id is required")
    result = send_global_notification_by_id(notification_id)
    return jsonify({"success": True, "results": result.to_dict()})
