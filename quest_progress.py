from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from flask import current_app

from activity import refresh_combined_points
from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models_activity import UserActivityRecord
from models_quests import (
    QUEST_ACTIVITY_BASED,
    QUEST_EARLY_ADOPTER,
    QUEST_SHARE_BASED,
    QUEST_STREAK_BASED,
    Quest,
    UserQuest,
    UserQuestProfile,
)


SHARE_LEDGER_DAYS = 7


def user_key(user_id) -> str:
    return str(user_id or "").strip().lower()


def parse_dt(value):
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 23, 59, 59)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1]
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    # "2025-01-31" means the whole day
    if len(s) == 10:
        dt = dt.replace(hour=23, minute=59, second=59)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=None)


def get_active_quests() -> list[Quest]:
    return Quest.query.filter_by(is_active=True).order_by(Quest.created_at.desc()).all()


def get_or_create_profile(user_id: str) -> UserQuestProfile:
    profile = db.session.get(UserQuestProfile, user_id)
    if profile is None:
        profile = UserQuestProfile(
            user_id=user_id,
            daily_login_streak=0,
            last_login_date=None,
            total_quests_completed=0,
            total_quest_points=0,
        )
        db.session.add(profile)
        db.session.flush()
    return profile


def _user_quest_map(user_id: str) -> dict[str, UserQuest]:
    return {uq.quest_id: uq for uq in UserQuest.query.filter_by(user_id=user_id).all()}


def sync_user_quests(profile: UserQuestProfile, quests: list[Quest]) -> list[UserQuest]:
    """Add a zero-progress row for every quest the user has not seen yet."""
    have = _user_quest_map(profile.user_id)
    created = []
    now = datetime.utcnow()
    for q in quests:
        if q.id in have:
            continue
        uq = UserQuest(
            user_id=profile.user_id,
            quest_id=q.id,
            progress=0,
            is_completed=False,
            started_at=now,
            last_updated=now,
        )
        db.session.add(uq)
        have[q.id] = uq
        created.append(uq)
    if created:
        db.session.flush()
    return created


def evaluate_completion(quest: Quest, progress, now: datetime):
    req = quest.requirements or {}
    if quest.type == QUEST_STREAK_BASED:
        return progress, progress >= int(req.get("streak_days") or 0)
    if quest.type == QUEST_ACTIVITY_BASED:
        return progress, progress >= int(req.get("activity_count") or 0)
    if quest.type == QUEST_SHARE_BASED:
        return progress, progress >= int(req.get("share_count") or 0)
    if quest.type == QUEST_EARLY_ADOPTER:
        target = parse_dt(req.get("target_date"))
        if target is not None and now <= target:
            return 1, True
        return progress, False
    return progress, False


def _require_active(quest: Quest) -> None:
    # Inactive quests are frozen: no progress, no payout.
    if not quest.is_active:
        raise ConflictError("Quest is not active", reason="quest_inactive")


def check_and_update_quest_progress(user_id: str, quest_id: str, progress, now: datetime | None = None) -> UserQuest:
    now = now or datetime.utcnow()
    quest = db.session.get(Quest, quest_id)
    if quest is None:
        raise NotFoundError("Quest not found")
    _require_active(quest)

    profile = get_or_create_profile(user_id)
    sync_user_quests(profile, get_active_quests())
    uq = UserQuest.query.filter_by(user_id=user_id, quest_id=quest_id).one()

    if uq.is_completed:
        return uq

    new_progress, completed = evaluate_completion(quest, progress, now)
    uq.progress = new_progress
    uq.last_updated = now

    if completed:
        uq.is_completed = True
        uq.completed_at = now
        profile.total_quest_points = int(profile.total_quest_points or 0) + int(quest.reward_points or 0)
        profile.total_quests_completed = int(profile.total_quests_completed or 0) + 1
        profile.last_updated = now

        record = db.session.get(UserActivityRecord, user_id)
        if record is not None:
            refresh_combined_points(record, profile.total_quest_points)

    db.session.commit()

    if completed:
        current_app.logger.info(
            "Quest completed: user=%s quest=%s points=%s", user_id, quest_id, quest.reward_points
        )
    return uq


def _check_quests_of_type(user_id: str, quest_type: str, progress, now: datetime | None = None) -> list[UserQuest]:
    return [
        check_and_update_quest_progress(user_id, q.id, progress, now=now)
        for q in get_active_quests()
        if q.type == quest_type
    ]


def update_daily_login_streak(user_id: str, today: date | None = None) -> UserQuestProfile:
    today = today or date.today()
    profile = get_or_create_profile(user_id)
    last = profile.last_login_date

    if last == today:
        profile.daily_login_streak = max(1, int(profile.daily_login_streak or 0))
    elif last is not None and last == today - timedelta(days=1):
        profile.daily_login_streak = int(profile.daily_login_streak or 0) + 1
    else:
        profile.daily_login_streak = 1

    profile.last_login_date = today
    profile.last_updated = datetime.utcnow()
    db.session.commit()

    _check_quests_of_type(user_id, QUEST_STREAK_BASED, profile.daily_login_streak)
    return profile


def complete_early_adopter_quest(user_id: str, now: datetime | None = None) -> list[UserQuest]:
    return _check_quests_of_type(user_id, QUEST_EARLY_ADOPTER, 1, now=now)


def refresh_activity_quests(user_id: str, activity_count: int) -> list[UserQuest]:
    return _check_quests_of_type(user_id, QUEST_ACTIVITY_BASED, activity_count)


def record_share(user_id: str, quest_id: str, today: date | None = None) -> dict:
    today = today or date.today()
    quest = db.session.get(Quest, quest_id)
    if quest is None:
        raise NotFoundError("Quest not found")
    if quest.type != QUEST_SHARE_BASED:
        raise ValidationError("Quest is not share based", reason="not_share_quest")
    _require_active(quest)

    profile = get_or_create_profile(user_id)
    sync_user_quests(profile, get_active_quests())
    uq = UserQuest.query.filter_by(user_id=user_id, quest_id=quest_id).one()

    if uq.is_completed:
        return {"status": "already_completed", "user_quest": uq}

    day = today.isoformat()
    limit = int((quest.requirements or {}).get("daily_share_limit") or 0)
    shared_today = uq.shares_on(day)
    if limit > 0 and shared_today >= limit:
        db.session.rollback()
        raise ConflictError("Daily share limit reached", reason="daily_share_limit_reached")

    ledger = [dict(e) for e in (uq.daily_shares or []) if e.get("date") != day]
    ledger.append({"date": day, "count": shared_today + 1})
    uq.daily_shares = ledger[-SHARE_LEDGER_DAYS:]

    uq = check_and_update_quest_progress(user_id, quest_id, (uq.progress or 0) + 1)
    return {"status": "completed" if uq.is_completed else "recorded", "user_quest": uq}


def get_available_quests(user_id: str) -> list[tuple[Quest, UserQuest]]:
    profile = get_or_create_profile(user_id)
    quests = get_active_quests()
    sync_user_quests(profile, quests)
    db.session.commit()
    have = _user_quest_map(user_id)
    return [(q, have[q.id]) for q in quests if q.id in have]


def new_since(pairs, now: datetime | None = None, hours: int = 24) -> list[Quest]:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(hours=hours)
    return [q for q, uq in pairs if q.created_at and q.created_at >= cutoff and not uq.is_completed]


def get_quest_points(user_id: str) -> int:
    profile = db.session.get(UserQuestProfile, user_id)
    return int(profile.total_quest_points or 0) if profile else 0


def get_user_quest_rows(user_id: str) -> list[UserQuest]:
    return UserQuest.query.filter_by(user_id=user_id).order_by(UserQuest.started_at.asc()).all()


def get_completed_quest_ids(user_id: str) -> set[str]:
    rows = UserQuest.query.filter_by(user_id=user_id, is_completed=True).all()
    return {r.quest_id for r in rows}
