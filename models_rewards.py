"""Reward catalog and redemption records.

One UserReward per (user, reward), enforced by uq_user_reward; the redemption
path also relies on it to reject concurrent double redemptions.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from extensions import db


REWARD_TYPES = ("points", "nft", "token", "badge", "discount")

USER_REWARD_PENDING = "pending"
USER_REWARD_CLAIMED = "claimed"
USER_REWARD_EXPIRED = "expired"


def _new_id() -> str:
    return uuid.uuid4().hex


class Reward(db.Model):
    __tablename__ = "rewards"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)
    points_reward = Column(Integer, nullable=False, default=0)
    required_quest_ids = Column(JSON, nullable=False, default=list)
    # Compared against combined points, not a level ordinal.
    required_level = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    max_redemptions = Column(Integer, nullable=True)
    current_redemptions = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_rewards_active_created", "is_active", "created_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "points_reward": self.points_reward,
            "requirements": {
                "quest_ids": list(self.required_quest_ids or []),
                "required_level": self.required_level,
            },
            "is_active": self.is_active,
            "max_redemptions": self.max_redemptions,
            "current_redemptions": self.current_redemptions,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UserReward(db.Model):
    __tablename__ = "user_rewards"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=False, index=True)
    reward_id = Column(String(36), ForeignKey("rewards.id"), nullable=False, index=True)
    reward_name = Column(String(200), nullable=False)
    reward_type = Column(String(20), nullable=False)
    points_reward = Column(Integer, nullable=False, default=0)
    redeemed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False, default=USER_REWARD_CLAIMED)

    __table_args__ = (
        UniqueConstraint("user_id", "reward_id", name="uq_user_reward"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "reward_id": self.reward_id,
            "reward_name": self.reward_name,
            "reward_type": self.reward_type,
            "points_reward": self.points_reward,
            "redeemed_at": self.redeemed_at.isoformat() if self.redeemed_at else None,
            "status": self.status,
        }
