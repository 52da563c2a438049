"""Reward APIs.

Routes:
- GET  /api/rewards?user_id=...&check_new=true
- POST /api/rewards   {user_id, reward_id}   (redeem)
"""

from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request

from errors import ValidationError
from extensions import limiter
from locks import user_lock
from quest_progress import user_key
from reward_eligibility import get_available_rewards_for_user, get_user_rewards, redeem_reward


rewards_api = Blueprint("rewards_api", __name__)


@rewards_api.get("/api/rewards")
def list_rewards():
    user_id = user_key(request.args.get("user_id"))
    if not user_id:
        raise ValidationError("user_id is required")

    pairs = get_available_rewards_for_user(user_id)
    out = {
        "success": True,
        "rewards": [dict(r.to_dict(), **e.to_dict()) for r, e in pairs],
        "user_rewards": [ur.to_dict() for ur in get_user_rewards(user_id)],
    }
    if str(request.args.get("check_new") or "").lower() == "true":
        cutoff = datetime.utcnow() - timedelta(hours=24)
        out["new_rewards"] = [
            r.to_dict() for r, e in pairs if r.created_at and r.created_at >= cutoff and not e.is_redeemed
        ]
    return jsonify(out)


@rewards_api.post("/api/rewards")
@limiter.limit("20 per minute")
def redeem():
    data = request.get_json(silent=True) or {}
    user_id = user_key(data.get("user_id"))
    reward_id = (data.get("reward_id") or "").strip()
    if not user_id or not reward_id:
        raise ValidationError("user_id and reward_id are required")

    with user_lock(user_id):
        user_reward = redeem_reward(user_id, reward_id)

    return jsonify({"success": True, "message": "Reward redeemed successfully", "user_reward": user_reward.to_dict()})
