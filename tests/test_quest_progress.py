"""Quest progress: streaks, shares, early adopter and completion accounting."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
from conftest import WALLET

from activity import Activity, add_user_activity
from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models_activity import UserActivityRecord
from models_quests import Quest, UserQuest, UserQuestProfile
from quest_progress import (
    check_and_update_quest_progress,
    complete_early_adopter_quest,
    evaluate_completion,
    get_available_quests,
    get_or_create_profile,
    new_since,
    record_share,
    sync_user_quests,
    update_daily_login_streak,
)


def _quest(qtype, requirements, points=100, **kw):
    q = Quest(title=f"{qtype} quest", description="d", type=qtype, requirements=requirements, reward_points=points, **kw)
    db.session.add(q)
    db.session.commit()
    return q


def _profile():
    return db.session.get(UserQuestProfile, WALLET)


def test_seven_day_streak_completes_quest(app_ctx):
    quest = _quest("streak_based", {"streak_days": 7})
    start = date(2025, 3, 1)

    for day in range(6):
        update_daily_login_streak(WALLET, today=start + timedelta(days=day))
    uq = UserQuest.query.filter_by(user_id=WALLET, quest_id=quest.id).one()
    assert _profile().daily_login_streak == 6
    assert uq.is_completed is False
    assert uq.progress == 6

    update_daily_login_streak(WALLET, today=start + timedelta(days=6))
    db.session.refresh(uq)
    assert _profile().daily_login_streak == 7
    assert uq.is_completed is True
    assert _profile().total_quest_points == 100
    assert _profile().total_quests_completed == 1


def test_streak_same_day_and_gap(app_ctx):
    today = date(2025, 3, 10)
    assert update_daily_login_streak(WALLET, today=today).daily_login_streak == 1
    assert update_daily_login_streak(WALLET, today=today).daily_login_streak == 1
    assert update_daily_login_streak(WALLET, today=today + timedelta(days=1)).daily_login_streak == 2
    assert update_daily_login_streak(WALLET, today=today + timedelta(days=4)).daily_login_streak == 1


def test_completion_is_terminal(app_ctx):
    quest = _quest("activity_based", {"activity_count": 2}, points=40)
    first = check_and_update_quest_progress(WALLET, quest.id, 3)
    completed_at = first.completed_at

    again = check_and_update_quest_progress(WALLET, quest.id, 0)
    assert again.is_completed is True
    assert again.progress == 3
    assert again.completed_at == completed_at
    assert _profile().total_quest_points == 40
    assert _profile().total_quests_completed == 1


def test_completion_refreshes_activity_record(app_ctx):
    add_user_activity(WALLET, Activity("1", "mint", "", 1, 35, "0x1", "outbound"))
    quest = _quest("activity_based", {"activity_count": 1}, points=20)
    check_and_update_quest_progress(WALLET, quest.id, 1)
    record = db.session.get(UserActivityRecord, WALLET)
    assert record.combined_points == 55
    assert record.level == "HODLer"
    assert record.rank_tier == "Bronze"


def test_unknown_quest_raises(app_ctx):
    with pytest.raises(NotFoundError):
        check_and_update_quest_progress(WALLET, "missing", 1)


def test_share_daily_cap(app_ctx):
    quest = _quest("share_based", {"share_count": 5, "daily_share_limit": 2})
    today = date(2025, 4, 1)

    assert record_share(WALLET, quest.id, today=today)["status"] == "recorded"
    assert record_share(WALLET, quest.id, today=today)["status"] == "recorded"
    with pytest.raises(ConflictError) as exc:
        record_share(WALLET, quest.id, today=today)
    assert exc.value.reason == "daily_share_limit_reached"

    uq = UserQuest.query.filter_by(user_id=WALLET, quest_id=quest.id).one()
    assert uq.progress == 2
    assert uq.shares_on(today.isoformat()) == 2

    # Next day the cap resets.
    res = record_share(WALLET, quest.id, today=today + timedelta(days=1))
    assert res["user_quest"].progress == 3


def test_share_completion_then_no_op(app_ctx):
    quest = _quest("share_based", {"share_count": 1}, points=10)
    assert record_share(WALLET, quest.id)["status"] == "completed"
    assert record_share(WALLET, quest.id)["status"] == "already_completed"
    assert _profile().total_quest_points == 10


def test_share_rejects_other_quest_types(app_ctx):
    quest = _quest("streak_based", {"streak_days": 3})
    with pytest.raises(ValidationError):
        record_share(WALLET, quest.id)


def test_early_adopter_deadline(app_ctx):
    quest = _quest("early_adopter", {"target_date": "2025-06-30"}, points=25)
    assert evaluate_completion(quest, 0, datetime(2025, 7, 1)) == (0, False)
    assert evaluate_completion(quest, 0, datetime(2025, 6, 30, 12)) == (1, True)

    late = complete_early_adopter_quest(WALLET, now=datetime(2025, 7, 2))
    assert [uq.is_completed for uq in late] == [False]

    on_time = complete_early_adopter_quest("0x" + "ef" * 20, now=datetime(2025, 6, 1))
    assert [uq.is_completed for uq in on_time] == [True]


def test_sync_is_additive(app_ctx):
    q1 = _quest("streak_based", {"streak_days": 3})
    profile = get_or_create_profile(WALLET)
    assert len(sync_user_quests(profile, [q1])) == 1
    assert sync_user_quests(profile, [q1]) == []

    q2 = _quest("share_based", {"share_count": 3})
    created = sync_user_quests(profile, [q1, q2])
    assert [uq.quest_id for uq in created] == [q2.id]
    assert UserQuest.query.filter_by(user_id=WALLET).count() == 2


def test_new_since_skips_old_and_completed(app_ctx):
    fresh = _quest("activity_based", {"activity_count": 10})
    old = _quest("activity_based", {"activity_count": 10}, created_at=datetime.utcnow() - timedelta(days=3))
    done = _quest("activity_based", {"activity_count": 1})
    check_and_update_quest_progress(WALLET, done.id, 1)

    pairs = get_available_quests(WALLET)
    assert {q.id for q in new_since(pairs)} == {fresh.id}
    assert old.id in {q.id for q, _ in pairs}


def test_quests_api_get_and_actions(client):
    quest = _quest("share_based", {"share_count": 2})

    resp = client.get(f"/api/quests?user_id={WALLET}&check_new=true")
    data = resp.get_json()
    assert resp.status_code == 200
    assert data["user_quest_data"]["daily_login_streak"] == 1
    assert [q["id"] for q in data["new_quests"]] == [quest.id]
    assert data["quests"][0]["user_progress"]["progress"] == 0

    resp = client.post("/api/quests", json={"user_id": WALLET, "action": "complete_share", "quest_id": quest.id})
    assert resp.status_code == 200
    assert resp.get_json()["user_quest"]["progress"] == 1

    resp = client.post("/api/quests", json={"user_id": WALLET, "action": "dance"})
    assert resp.status_code == 400


def test_early_adopter_without_deadline_never_completes(app_ctx):
    quest = _quest("early_adopter", {}, points=25)
    assert evaluate_completion(quest, 0, datetime(2030, 1, 1)) == (0, False)

    rows = complete_early_adopter_quest(WALLET, now=datetime(2030, 1, 1))
    assert [uq.is_completed for uq in rows] == [False]
    assert _profile().total_quest_points == 0


def test_inactive_quest_cannot_progress(app_ctx):
    share = _quest("share_based", {"share_count": 1}, points=10, is_active=False)
    streak = _quest("streak_based", {"streak_days": 1}, is_active=False)

    with pytest.raises(ConflictError) as exc:
        record_share(WALLET, share.id)
    assert exc.value.reason == "quest_inactive"

    with pytest.raises(ConflictError) as exc:
        check_and_update_quest_progress(WALLET, streak.id, 5)
    assert exc.value.reason == "quest_inactive"

    assert UserQuest.query.filter_by(user_id=WALLET, is_completed=True).count() == 0
    profile = _profile()
    assert profile is None or profile.total_quest_points == 0


def test_missing_threshold_defaults_to_zero(app_ctx):
    quest = _quest("activity_based", {})
    assert evaluate_completion(quest, 0, datetime(2025, 1, 1)) == (0, True)
