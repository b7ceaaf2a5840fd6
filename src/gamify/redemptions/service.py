"""Rewards and redemptions.

Creating a redemption spends the reward's cost, inserts the redemption in
PROCESSING and notifies observers, all in the caller's unit of work.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import RedemptionStatus, Reward, RewardRedemption
from gamify.errors import (
    InsufficientPointsError,
    RedemptionNotFoundError,
    RewardNotFoundError,
    RewardUnavailableError,
    ValidationError,
)
from gamify.points.service import debit_points, get_user
from gamify.redemptions.states import RedemptionStateMachine
from gamify.schemas import RedemptionView

logger = logging.getLogger(__name__)

REDEMPTION_EVENT_TYPE = "REWARD_REDEMPTION"


async def create_reward(
    db: AsyncSession,
    name: str,
    cost_in_points: int,
    description: str = "",
    available: bool = True,
) -> Reward:
    if cost_in_points < 0:
        raise ValidationError("Reward cost must not be negative")
    reward = Reward(
        name=name,
        description=description,
        cost_in_points=cost_in_points,
        available=available,
    )
    db.add(reward)
    await db.flush()
    return reward


async def get_reward(db: AsyncSession, reward_id: str) -> Reward:
    reward = await db.get(Reward, reward_id)
    if reward is None:
        raise RewardNotFoundError(reward_id)
    return reward


async def list_rewards(db: AsyncSession, available_only: bool = False) -> list[Reward]:
    stmt = select(Reward).order_by(Reward.cost_in_points.asc())
    if available_only:
        stmt = stmt.where(Reward.available.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_redemption(
    db: AsyncSession,
    redemption_id: str,
    *,
    for_update: bool = False,
) -> RewardRedemption:
    stmt = select(RewardRedemption).where(RewardRedemption.id == redemption_id)
    if for_update:
        stmt = stmt.with_for_update(of=RewardRedemption)
    result = await db.execute(stmt)
    redemption = result.unique().scalar_one_or_none()
    if redemption is None:
        raise RedemptionNotFoundError(redemption_id)
    return redemption


async def create_redemption(
    db: AsyncSession,
    machine: RedemptionStateMachine,
    user_id: str,
    reward_id: str,
    now: datetime | None = None,
) -> RewardRedemption:
    """Redeem a reward for a user.

    Raises UserNotFoundError, RewardNotFoundError, RewardUnavailableError or
    InsufficientPointsError before anything is written.
    """
    user = await get_user(db, user_id, for_update=True)
    reward = await get_reward(db, reward_id)
    if not reward.available:
        raise RewardUnavailableError(reward_id)
    if reward.cost_in_points > user.available_points:
        raise InsufficientPointsError(user.id, reward.cost_in_points, user.available_points)
    if now is None:
        now = datetime.now(timezone.utc)

    redemption = RewardRedemption(
        user_id=user.id,
        reward_id=reward.id,
        status=RedemptionStatus.PROCESSING.value,
        created_at=now,
        updated_at=now,
    )
    redemption.user = user
    redemption.reward = reward
    db.add(redemption)
    await db.flush()

    await debit_points(
        db,
        user,
        reward.cost_in_points,
        REDEMPTION_EVENT_TYPE,
        {"redemptionId": redemption.id, "rewardId": reward.id, "rewardName": reward.name},
        now,
    )
    await machine.notify_created(db, redemption)

    logger.info(
        "User %s redeemed %s for %d points (redemption %s)",
        user.id, reward.name, reward.cost_in_points, redemption.id,
    )
    return redemption


def to_view(redemption: RewardRedemption) -> RedemptionView:
    return RedemptionView(
        id=redemption.id,
        user_id=redemption.user_id,
        reward_id=redemption.reward_id,
        reward_name=redemption.reward.name,
        points_spent=redemption.reward.cost_in_points,
        status=redemption.status,
        failure_reason=redemption.failure_reason,
        created_at=redemption.created_at,
        updated_at=redemption.updated_at,
    )
