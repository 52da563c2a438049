from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from activity import get_combined_points
from errors import ConflictError, NotFoundError, ValidationError
from extensions import db
from models_rewards import USER_REWARD_CLAIMED, Reward, UserReward
from points import compute_level
from quest_progress import get_completed_quest_ids


@dataclass
class Eligibility:
    is_eligible: bool
    is_redeemed: bool
    missing_requirements: list[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "is_eligible": self.is_eligible,
            "is_redeemed": self.is_redeemed,
            "missing_requirements": list(self.missing_requirements),
        }


def evaluate_reward(reward: Reward, combined_points: int, completed_quest_ids, redeemed: bool) -> Eligibility:
    missing = []

    required = int(reward.required_level or 0)
    if combined_points < required:
        missing.append(f"Need level {required} (current: {compute_level(combined_points)})")

    done = set(completed_quest_ids or ())
    outstanding = [qid for qid in (reward.required_quest_ids or []) if qid not in done]
    if outstanding:
        missing.append(f"Complete {len(outstanding)} more quest(s)")

    if reward.max_redemptions is not None and (reward.current_redemptions or 0) >= reward.max_redemptions:
        missing.append("Reward limit reached")

    return Eligibility(is_eligible=not missing and not redeemed, is_redeemed=redeemed, missing_requirements=missing)


def get_active_rewards() -> list[Reward]:
    return Reward.query.filter_by(is_active=True).order_by(Reward.created_at.desc()).all()


def get_reward(reward_id: str) -> Reward | None:
    return db.session.get(Reward, reward_id)


def get_user_rewards(user_id: str) -> list[UserReward]:
    return UserReward.query.filter_by(user_id=user_id).order_by(UserReward.redeemed_at.desc()).all()


def has_user_redeemed(user_id: str, reward_id: str) -> bool:
    return UserReward.query.filter_by(user_id=user_id, reward_id=reward_id).first() is not None


def get_available_rewards_for_user(user_id: str) -> list[tuple[Reward, Eligibility]]:
    points = get_combined_points(user_id)["total_points"]
    completed = get_completed_quest_ids(user_id)
    redeemed = {ur.reward_id for ur in get_user_rewards(user_id)}
    return [(r, evaluate_reward(r, points, completed, r.id in redeemed)) for r in get_active_rewards()]


def redeem_reward(user_id: str, reward_id: str) -> UserReward:
    reward = get_reward(reward_id)
    if reward is None:
        raise NotFoundError("Reward not found")
    if not reward.is_active:
        raise ValidationError("Reward is not active", reason="reward_inactive")
    if has_user_redeemed(user_id, reward_id):
        raise ConflictError("Reward already redeemed", reason="already_redeemed")
    if reward.max_redemptions is not None and (reward.current_redemptions or 0) >= reward.max_redemptions:
        raise ConflictError("Reward redemption limit reached", reason="redemption_limit_reached")

    points = get_combined_points(user_id)["total_points"]
    elig = evaluate_reward(reward, points, get_completed_quest_ids(user_id), False)
    if elig.missing_requirements:
        raise ConflictError(
            "Requirements not met", reason="requirements_not_met", details=elig.missing_requirements
        )

    user_reward = UserReward(
        user_id=user_id,
        reward_id=reward.id,
        reward_name=reward.name,
        reward_type=reward.type,
        points_reward=reward.points_reward,
        redeemed_at=datetime.utcnow(),
        status=USER_REWARD_CLAIMED,
    )
    try:
        db.session.add(user_reward)
        db.session.flush()
        res = db.session.execute(
            update(Reward)
            .where(Reward.id == reward.id)
            .where(or_(Reward.max_redemptions.is_(None), Reward.current_redemptions < Reward.max_redemptions))
            .values(current_redemptions=Reward.current_redemptions + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            db.session.rollback()
            raise ConflictError("Reward redemption limit reached", reason="redemption_limit_reached")
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Reward already redeemed", reason="already_redeemed")

    db.session.refresh(reward)
    current_app.logger.info("Reward redeemed: user=%s reward=%s", user_id, reward_id)
    return user_reward
