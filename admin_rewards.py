"""Admin reward APIs (X-Admin-Key).

Routes:
- POST /api/rewards/create
- PUT  /api/admin/rewards/<id>
"""

from flask import Blueprint, current_app, jsonify, request

from admin_auth import require_admin
from errors import NotFoundError, ValidationError
from extensions import db
from models_rewards import REWARD_TYPES, Reward
from notifications import notify_new_reward


admin_rewards = Blueprint("admin_rewards", __name__)


@admin_rewards.post("/api/rewards/create")
@require_admin
def create_reward():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    description = (data.get("description") or "").strip()
    rtype = (data.get("type") or "").strip()
    if not name or not description or not rtype:
        raise ValidationError("Missing required fields: name, description, type")
    if rtype not in REWARD_TYPES:
        raise ValidationError(f"type must be one of {', '.join(REWARD_TYPES)}")

    requirements = data.get("requirements") or {}
    quest_ids = requirements.get("quest_ids") or []
    if not isinstance(quest_ids, list):
        raise ValidationError("requirements.quest_ids must be a list")
    try:
        points_reward = int(data.get("points_reward") or 0)
        required_level = int(requirements.get("required_level") or 0)
        max_redemptions = data.get("max_redemptions")
        max_redemptions = int(max_redemptions) if max_redemptions not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError("points_reward, required_level and max_redemptions must be integers")
    if points_reward < 0 or required_level < 0:
        raise ValidationError("points_reward and required_level must not be negative")
    if max_redemptions is not None and max_redemptions < 1:
        raise ValidationError("max_redemptions must be at least 1")

    reward = Reward(
        name=name,
        description=description,
        type=rtype,
        points_reward=points_reward,
        required_quest_ids=[str(q) for q in quest_ids],
        required_level=required_level,
        is_active=bool(data.get("is_active", True)),
        max_redemptions=max_redemptions,
        current_redemptions=0,
    )
    db.session.add(reward)
    db.session.commit()
    current_app.logger.info("Created new reward: %s (ID: %s)", name, reward.id)

    if reward.is_active:
        try:
            notify_new_reward(reward)
        except Exception:
            current_app.logger.exception("Failed to send new reward notification")

    return jsonify({"success": True, "message": "Reward created successfully", "reward": reward.to_dict()})


@admin_rewards.put("/api/admin/rewards/<reward_id>")
@require_admin
def admin_update_reward(reward_id):
    reward = db.session.get(Reward, reward_id)
    if reward is None:
        raise NotFoundError("Reward not found")
    data = request.get_json(silent=True) or {}
    if "is_active" not in data:
        raise ValidationError("is_active is required")
    reward.is_active = bool(data["is_active"])
    db.session.commit()
    return jsonify({"success": True, "reward": reward.to_dict()})
