"""Ladder levels and per-user ladder status.

A user's level is the highest level whose ``points_required`` is at or below
their earned points. Status rows are derived: they are recomputed from the
user's earned points and never edited on their own.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import LadderLevel, UserLadderStatus
from gamify.errors import ValidationError
from gamify.points.service import get_user
from gamify.schemas import LadderStatusView

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = {"level": 1, "label": "Beginner", "points_required": 0}


def compute_ladder_position(earned_points: int, levels: Sequence[LadderLevel]) -> dict:
    """Place ``earned_points`` on a ladder sorted by ascending points_required.

    Below the first threshold the user sits on the lowest level. At the top
    level there is no next level and nothing left to earn.
    """
    if not levels:
        raise ValueError("Ladder has no levels")

    current_index = 0
    for i, level in enumerate(levels):
        if level.points_required <= earned_points:
            current_index = i
        else:
            break

    current = levels[current_index]
    next_level = levels[current_index + 1] if current_index + 1 < len(levels) else None
    if next_level is None:
        points_to_next = 0
    else:
        points_to_next = max(next_level.points_required - earned_points, 0)

    return {
        "current": current,
        "next": next_level,
        "points_to_next_level": points_to_next,
    }


async def list_levels(db: AsyncSession) -> list[LadderLevel]:
    result = await db.execute(select(LadderLevel).order_by(LadderLevel.points_required.asc()))
    return list(result.scalars().all())


async def ensure_default_level(db: AsyncSession) -> list[LadderLevel]:
    """Return the ladder, creating level 1 "Beginner" at 0 points if it is empty."""
    levels = await list_levels(db)
    if levels:
        return levels
    level = LadderLevel(**DEFAULT_LEVEL)
    db.add(level)
    await db.flush()
    logger.info("Ladder was empty, created default level %s", DEFAULT_LEVEL["label"])
    return [level]


async def create_ladder_level(
    db: AsyncSession,
    level: int,
    label: str,
    points_required: int,
) -> LadderLevel:
    """Add a level, keeping level numbers and thresholds in the same order."""
    if points_required < 0:
        raise ValidationError("points_required must not be negative")

    for existing in await list_levels(db):
        if existing.level == level:
            raise ValidationError(f"Ladder level {level} already exists")
        if existing.points_required == points_required:
            raise ValidationError(
                f"Level {existing.level} already requires {points_required} points"
            )
        if (existing.level < level) != (existing.points_required < points_required):
            raise ValidationError(
                f"Level {level} at {points_required} points is out of order "
                f"with level {existing.level} at {existing.points_required} points"
            )

    row = LadderLevel(level=level, label=label, points_required=points_required)
    db.add(row)
    await db.flush()
    return row


def _to_view(status: UserLadderStatus, next_level: LadderLevel | None) -> LadderStatusView:
    return LadderStatusView(
        user_id=status.user_id,
        current_level=status.current_level.level,
        level_label=status.current_level.label,
        earned_points=status.earned_points,
        points_to_next_level=status.points_to_next_level,
        next_level=next_level.level if next_level else None,
        next_level_label=next_level.label if next_level else None,
        updated_at=status.updated_at,
    )


async def update_user_ladder_status(
    db: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> LadderStatusView:
    """Recompute and persist the user's ladder status. Flushes, never commits."""
    user = await get_user(db, user_id)
    levels = await ensure_default_level(db)
    position = compute_ladder_position(user.earned_points, levels)
    if now is None:
        now = datetime.now(timezone.utc)

    status = await db.get(UserLadderStatus, user_id)
    if status is None:
        status = UserLadderStatus(user_id=user_id)
        db.add(status)

    old_level_id = status.current_level_id
    status.current_level = position["current"]
    status.current_level_id = position["current"].id
    status.earned_points = user.earned_points
    status.points_to_next_level = position["points_to_next_level"]
    status.updated_at = now
    await db.flush()

    if old_level_id is not None and old_level_id != status.current_level_id:
        logger.info(
            "User %s moved to ladder level %d (%s)",
            user_id, position["current"].level, position["current"].label,
        )
    return _to_view(status, position["next"])


async def get_user_ladder_status(db: AsyncSession, user_id: str) -> LadderStatusView:
    """Return the stored ladder status, computing it on first access."""
    status = await db.get(UserLadderStatus, user_id)
    if status is None:
        return await update_user_ladder_status(db, user_id)

    levels = await list_levels(db)
    next_level = next(
        (lvl for lvl in levels if lvl.points_required > status.current_level.points_required),
        None,
    )
    return _to_view(status, next_level)


async def get_user_level_number(db: AsyncSession, user_id: str) -> int | None:
    """Current level number from the stored status, or None if never computed."""
    status = await db.get(UserLadderStatus, user_id)
    return status.current_level.level if status else None
