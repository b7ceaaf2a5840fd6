"""Achievement definitions and awards.

Awards are never repeated: ``award_achievement`` checks for an existing row
and the (user, achievement) primary key backs that check. Callers serialize
awards per user and publish ACHIEVEMENT_EARNED only after committing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.achievements.criteria import CriteriaEvaluator
from gamify.db.models import Achievement, User, UserAchievement
from gamify.errors import AchievementNotFoundError, DuplicateAchievementError
from gamify.points.service import get_user
from gamify.schemas import EarnedAchievementView, UserAchievementsView

logger = logging.getLogger(__name__)


# --- Definitions ---


async def get_achievement_by_name(db: AsyncSession, name: str) -> Achievement | None:
    result = await db.execute(select(Achievement).where(Achievement.name == name))
    return result.scalar_one_or_none()


async def get_achievement(db: AsyncSession, achievement_id: str) -> Achievement:
    achievement = await db.get(Achievement, achievement_id)
    if achievement is None:
        raise AchievementNotFoundError(achievement_id)
    return achievement


async def list_achievements(db: AsyncSession) -> list[Achievement]:
    result = await db.execute(select(Achievement).order_by(Achievement.name.asc()))
    return list(result.scalars().all())


async def create_achievement(
    db: AsyncSession,
    evaluator: CriteriaEvaluator,
    name: str,
    description: str,
    criteria: dict[str, Any],
) -> Achievement:
    """Create an achievement definition.

    Raises DuplicateAchievementError or InvalidCriteriaError before writing.
    """
    if await get_achievement_by_name(db, name) is not None:
        raise DuplicateAchievementError(name)
    evaluator.validate(criteria)

    achievement = Achievement(name=name, description=description, criteria=dict(criteria))
    db.add(achievement)
    await db.flush()
    logger.info("Created achievement %s (%s)", name, criteria.get("type"))
    return achievement


async def update_achievement(
    db: AsyncSession,
    evaluator: CriteriaEvaluator,
    achievement_id: str,
    *,
    name: str | None = None,
    description: str | None = None,
    criteria: dict[str, Any] | None = None,
) -> Achievement:
    achievement = await get_achievement(db, achievement_id)

    if name is not None and name != achievement.name:
        if await get_achievement_by_name(db, name) is not None:
            raise DuplicateAchievementError(name)
    if criteria is not None:
        evaluator.validate(criteria)

    if name is not None:
        achievement.name = name
    if description is not None:
        achievement.description = description
    if criteria is not None:
        achievement.criteria = dict(criteria)
    await db.flush()
    return achievement


async def delete_achievement(db: AsyncSession, achievement_id: str) -> None:
    achievement = await get_achievement(db, achievement_id)
    await db.delete(achievement)
    await db.flush()


# --- Awards ---


async def has_achievement(db: AsyncSession, user_id: str, achievement_id: str) -> bool:
    """Check if user already holds a specific achievement."""
    result = await db.execute(
        select(UserAchievement.achievement_id).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == achievement_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def award_achievement(
    db: AsyncSession,
    user: User,
    achievement: Achievement,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> bool:
    """Grant an achievement. Returns True if awarded, False if already held."""
    if await has_achievement(db, user.id, achievement.id):
        return False
    if now is None:
        now = datetime.now(timezone.utc)

    db.add(UserAchievement(
        user_id=user.id,
        achievement_id=achievement.id,
        achievement=achievement,
        earned_at=now,
        achievement_metadata=metadata or {},
    ))
    await db.flush()
    logger.info("User %s earned achievement %s", user.id, achievement.name)
    return True


async def check_criteria(
    db: AsyncSession,
    evaluator: CriteriaEvaluator,
    user: User,
    achievement: Achievement,
) -> bool:
    return await evaluator.evaluate(db, user, achievement.criteria)


async def process_achievements(
    db: AsyncSession,
    evaluator: CriteriaEvaluator,
    user: User,
    event_type: str,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> list[Achievement]:
    """Evaluate every achievement the user does not hold yet and award the ones now met.

    Returns the newly awarded achievements. Flushes only.
    """
    held = await db.execute(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user.id)
    )
    held_ids = set(held.scalars().all())

    awarded: list[Achievement] = []
    for achievement in await list_achievements(db):
        if achievement.id in held_ids:
            continue
        if not await evaluator.evaluate(db, user, achievement.criteria):
            continue
        metadata = {"eventType": event_type, "eventData": dict(payload or {})}
        if await award_achievement(db, user, achievement, metadata, now):
            awarded.append(achievement)

    if awarded:
        logger.info(
            "Awarded %d achievement(s) to %s on %s",
            len(awarded), user.id, event_type,
        )
    return awarded


async def get_user_achievements(db: AsyncSession, user_id: str) -> UserAchievementsView:
    """Earned achievements for a user, most recent first, with totals."""
    await get_user(db, user_id)

    result = await db.execute(
        select(UserAchievement)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.earned_at.desc())
    )
    earned = [
        EarnedAchievementView(
            achievement_id=ua.achievement_id,
            name=ua.achievement.name,
            description=ua.achievement.description,
            earned_at=ua.earned_at,
            metadata=ua.achievement_metadata or {},
        )
        for ua in result.unique().scalars().all()
    ]
    total_available = (await db.execute(select(func.count(Achievement.id)))).scalar_one()

    return UserAchievementsView(
        user_id=user_id,
        earned=earned,
        total_available=total_available,
        total_earned=len(earned),
    )
