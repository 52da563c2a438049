"""Quest system models.

- Quests are admin-authored and shared by every user.
- UserQuestProfile is the per-user aggregate (streak, totals).
- UserQuest is one row per (user, quest), created lazily by
  quest_progress.sync_user_quests(). Once is_completed is set the row is
  never reverted.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from extensions import db


QUEST_EARLY_ADOPTER = "early_adopter"
QUEST_ACTIVITY_BASED = "activity_based"
QUEST_STREAK_BASED = "streak_based"
QUEST_SHARE_BASED = "share_based"

QUEST_TYPES = (QUEST_EARLY_ADOPTER, QUEST_ACTIVITY_BASED, QUEST_STREAK_BASED, QUEST_SHARE_BASED)


def _new_id() -> str:
    return uuid.uuid4().hex


def _iso(dt):
    return dt.isoformat() if dt else None


class Quest(db.Model):
    __tablename__ = "quests"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    requirements = Column(JSON, nullable=False, default=dict)
    reward_points = Column(Integer, nullable=False, default=0)
    reward_title = Column(String(120), nullable=True)
    reward_badge = Column(String(120), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_quests_active_created", "is_active", "created_at"),
    )

    def to_dict(self):
        rewards = {"points": self.reward_points}
        if self.reward_title:
            rewards["title"] = self.reward_title
        if self.reward_badge:
            rewards["badge"] = self.reward_badge
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "requirements": dict(self.requirements or {}),
            "rewards": rewards,
            "is_active": self.is_active,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "created_at": _iso(self.created_at),
        }


class UserQuestProfile(db.Model):
    __tablename__ = "user_quest_profiles"

    user_id = Column(String(64), primary_key=True)
    daily_login_streak = Column(Integer, nullable=False, default=0)
    last_login_date = Column(Date, nullable=True)
    total_quests_completed = Column(Integer, nullable=False, default=0)
    total_quest_points = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self, quests=None):
        return {
            "user_id": self.user_id,
            "quests": [q.to_dict() for q in (quests or [])],
            "daily_login_streak": self.daily_login_streak,
            "last_login_date": self.last_login_date.isoformat() if self.last_login_date else None,
            "total_quests_completed": self.total_quests_completed,
            "total_quest_points": self.total_quest_points,
            "last_updated": _iso(self.last_updated),
        }


class UserQuest(db.Model):
    __tablename__ = "user_quests"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), ForeignKey("user_quest_profiles.user_id"), nullable=False, index=True)
    quest_id = Column(String(36), ForeignKey("quests.id"), nullable=False, index=True)
    progress = Column(Float, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow)
    # [{"date": "YYYY-MM-DD", "count": n}, ...], oldest first
    daily_shares = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", name="uq_user_quest"),
    )

    def shares_on(self, day: str) -> int:
        for entry in self.daily_shares or []:
            if entry.get("date") == day:
                return int(entry.get("count") or 0)
        return 0

    def to_dict(self):
        progress = self.progress or 0
        data = {
            "user_id": self.user_id,
            "quest_id": self.quest_id,
            "progress": int(progress) if float(progress).is_integer() else progress,
            "is_completed": self.is_completed,
            "completed_at": _iso(self.completed_at),
            "started_at": _iso(self.started_at),
            "last_updated": _iso(self.last_updated),
        }
        if self.daily_shares is not None:
            data["daily_shares"] = list(self.daily_shares)
        return data
