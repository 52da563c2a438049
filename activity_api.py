"""Wallet activity APIs.

Routes:
- GET  /api/activity?address=0x...&direction=all|inbound|outbound&force_refresh=true
- POST /api/activity
"""

from flask import Blueprint, jsonify, request

from activity import (
    Activity,
    get_combined_points,
    get_scanner,
    get_stored_activities,
    normalize_address,
    add_user_activity,
)
from chain import DIRECTION_INBOUND, DIRECTION_OUTBOUND
from errors import ValidationError
from extensions import db, limiter
from locks import user_lock
from models_activity import UserActivityRecord
from points import ACTIVITY_TYPES, points_for
from quest_progress import refresh_activity_quests


activity_api = Blueprint("activity_api", __name__)


def _truthy(v) -> bool:
    return str(v or "").strip().lower() in ("1", "true", "yes")


@activity_api.get("/api/activity")
def get_activity():
    address = normalize_address(request.args.get("address"))
    if not address:
        raise ValidationError("Valid address parameter is required")
    direction = (request.args.get("direction") or "all").strip().lower()
    if direction not in ("all", DIRECTION_INBOUND, DIRECTION_OUTBOUND):
        raise ValidationError("direction must be all, inbound or outbound")
    force_refresh = _truthy(request.args.get("force_refresh"))

    with user_lock(address):
        result = get_scanner().scan(address, force_refresh=force_refresh)
        activities = get_stored_activities(address)
        if result.scanned:
            refresh_activity_quests(address, len(activities))

    record = db.session.get(UserActivityRecord, address)
    points = get_combined_points(address)
    filtered = activities if direction == "all" else [a for a in activities if a.direction == direction]

    return jsonify({
        "success": True,
        "activities": [a.to_dict() for a in filtered],
        "total_points": points["total_points"],
        "activity_points": points["activity_points"],
        "quest_points": points["quest_points"],
        "level": points["level"],
        "rank_tier": points["rank_tier"],
        "inbound_count": sum(1 for a in activities if a.direction == DIRECTION_INBOUND),
        "outbound_count": sum(1 for a in activities if a.direction == DIRECTION_OUTBOUND),
        "last_scanned_block": record.last_scanned_block if record else None,
        "is_initial_scan_complete": bool(record.is_initial_scan_complete) if record else False,
        "scanned": result.scanned,
    })


@activity_api.post("/api/activity")
@limiter.limit("30 per minute")
def record_activity():
    data = request.get_json(silent=True) or {}
    address = normalize_address(data.get("address"))
    activity_type = (data.get("type") or "").strip()
    tx_hash = (data.get("hash") or "").strip()
    if not address or not activity_type or not tx_hash:
        raise ValidationError("Missing required fields: address, type, hash")
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError(f"type must be one of {', '.join(ACTIVITY_TYPES)}")

    direction = (data.get("direction") or DIRECTION_OUTBOUND).strip().lower()
    if direction not in (DIRECTION_INBOUND, DIRECTION_OUTBOUND):
        raise ValidationError("direction must be inbound or outbound")
    try:
        timestamp = int(data.get("timestamp") or 0)
    except (TypeError, ValueError):
        raise ValidationError("timestamp must be an integer (ms)")

    activity = Activity(
        id=f"{tx_hash}-{timestamp}",
        type=activity_type,
        description=(data.get("description") or "").strip(),
        timestamp=timestamp,
        points=points_for(activity_type),
        hash=tx_hash,
        direction=direction,
    )

    with user_lock(address):
        add_user_activity(address, activity)
        refresh_activity_quests(address, len(get_stored_activities(address)))

    return jsonify({"success": True, "activity": activity.to_dict()})
