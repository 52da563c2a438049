"""Admin quest APIs (X-Admin-Key).

Routes:
- POST /api/quests/create
- GET  /api/admin/quests
- PUT  /api/admin/quests/<id>
"""

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from admin_auth import require_admin
from errors import NotFoundError, ValidationError
from extensions import db
from models_quests import (
    QUEST_ACTIVITY_BASED,
    QUEST_EARLY_ADOPTER,
    QUEST_SHARE_BASED,
    QUEST_STREAK_BASED,
    QUEST_TYPES,
    Quest,
)
from notifications import notify_new_quest
from quest_progress import parse_dt


admin_quests = Blueprint("admin_quests", __name__)


def _int(v, name, default=0):
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        n = int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if n < 0:
        raise ValidationError(f"{name} must not be negative")
    return n


# Threshold each quest type is judged against.
THRESHOLD_KEYS = {
    QUEST_STREAK_BASED: "streak_days",
    QUEST_ACTIVITY_BASED: "activity_count",
    QUEST_SHARE_BASED: "share_count",
}


def _clean_requirements(qtype, requirements):
    req = dict(requirements)
    if qtype == QUEST_EARLY_ADOPTER:
        if not req.get("target_date") or parse_dt(req["target_date"]) is None:
            raise ValidationError("requirements.target_date (ISO date) is required for early_adopter quests")
    elif req.get("target_date") and parse_dt(req["target_date"]) is None:
        raise ValidationError("requirements.target_date must be an ISO date")

    key = THRESHOLD_KEYS.get(qtype)
    if key:
        if req.get(key) in (None, ""):
            raise ValidationError(f"requirements.{key} is required for {qtype} quests")
        req[key] = _int(req[key], f"requirements.{key}")
    for k in ("streak_days", "activity_count", "share_count", "daily_share_limit"):
        if k != key and k in req:
            req[k] = _int(req[k], f"requirements.{k}")
    return req


@admin_quests.post("/api/quests/create")
@require_admin
def create_quest():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    description = (data.get("description") or "").strip()
    qtype = (data.get("type") or "").strip()
    rewards = data.get("rewards")
    if not title or not description or not qtype or not isinstance(rewards, dict):
        raise ValidationError("Missing required fields: title, description, type, rewards")
    if qtype not in QUEST_TYPES:
        raise ValidationError(f"type must be one of {', '.join(QUEST_TYPES)}")

    requirements = data.get("requirements") or {}
    if not isinstance(requirements, dict):
        raise ValidationError("requirements must be an object")
    requirements = _clean_requirements(qtype, requirements)

    is_active = bool(data.get("is_active", True))
    quest = Quest(
        title=title,
        description=description,
        type=qtype,
        requirements=requirements,
        reward_points=_int(rewards.get("points"), "rewards.points"),
        reward_title=rewards.get("title"),
        reward_badge=rewards.get("badge"),
        is_active=is_active,
        start_date=parse_dt(data.get("start_date")) or datetime.utcnow(),
        end_date=parse_dt(data.get("end_date")),
    )
    db.session.add(quest)
    db.session.commit()
    current_app.logger.info("Created new quest: %s (ID: %s)", title, quest.id)

    notified = None
    if data.get("send_notification", True) and is_active:
        try:
            notified = notify_new_quest(quest).to_dict()
        except Exception:
            # Creation already succeeded; the broadcast is best effort.
            current_app.logger.exception("Failed to send new quest notification")

    return jsonify({"success": True, "message": "Quest created successfully", "quest": quest.to_dict(), "notification": notified})


@admin_quests.get("/api/admin/quests")
@require_admin
def admin_list_quests():
    quests = Quest.query.order_by(Quest.created_at.desc()).all()
    return jsonify({"success": True, "quests": [q.to_dict() for q in quests]})


@admin_quests.put("/api/admin/quests/<quest_id>")
@require_admin
def admin_update_quest(quest_id):
    quest = db.session.get(Quest, quest_id)
    if quest is None:
        raise NotFoundError("Quest not found")
    data = request.get_json(silent=True) or {}
    if "is_active" not in data:
        raise ValidationError("is_active is required")
    quest.is_active = bool(data["is_active"])
    db.session.commit()
    return jsonify({"success": True, "quest": quest.to_dict()})
