"""User-facing quest APIs.

Routes:
- GET  /api/quests?user_id=...&check_new=true
- POST /api/quests   {user_id, action, quest_id?}

Users are identified by wallet address (lowercased), the same key the
activity record uses, so quest points land in the user's combined total.
"""

from datetime import datetime

from flask import Blueprint, jsonify, request

from errors import ValidationError
from extensions import limiter
from locks import user_lock
from quest_progress import (
    complete_early_adopter_quest,
    get_available_quests,
    get_or_create_profile,
    get_user_quest_rows,
    new_since,
    record_share,
    update_daily_login_streak,
    user_key,
)


quests_api = Blueprint("quests_api", __name__)

ACTIONS = ("update_login_streak", "check_early_adopter", "complete_share")


def _user_payload(user_id):
    profile = get_or_create_profile(user_id)
    return profile.to_dict(get_user_quest_rows(user_id))


@quests_api.get("/api/quests")
def list_quests():
    user_id = user_key(request.args.get("user_id"))
    if not user_id:
        raise ValidationError("user_id is required")
    check_new = str(request.args.get("check_new") or "").lower() == "true"

    with user_lock(user_id):
        update_daily_login_streak(user_id)
        pairs = get_available_quests(user_id)

    out = {
        "success": True,
        "quests": [dict(q.to_dict(), user_progress=uq.to_dict()) for q, uq in pairs],
        "user_quest_data": _user_payload(user_id),
    }
    if check_new:
        out["new_quests"] = [q.to_dict() for q in new_since(pairs, datetime.utcnow())]
    return jsonify(out)


@quests_api.post("/api/quests")
@limiter.limit("60 per minute")
def quest_action():
    data = request.get_json(silent=True) or {}
    user_id = user_key(data.get("user_id"))
    action = (data.get("action") or "").strip()
    if not user_id or action not in ACTIONS:
        raise ValidationError(f"user_id and action ({', '.join(ACTIONS)}) are required")

    out = {"success": True, "action": action}
    with user_lock(user_id):
        if action == "update_login_streak":
            profile = update_daily_login_streak(user_id)
            out["daily_login_streak"] = profile.daily_login_streak
        elif action == "check_early_adopter":
            rows = complete_early_adopter_quest(user_id)
            out["completed"] = [uq.quest_id for uq in rows if uq.is_completed]
        else:
            quest_id = (data.get("quest_id") or "").strip()
            if not quest_id:
                raise ValidationError("quest_id is required for complete_share")
            res = record_share(user_id, quest_id)
            out["status"] = res["status"]
            out["user_quest"] = res["user_quest"].to_dict()

    out["user_quest_data"] = _user_payload(user_id)
    return jsonify(out)
