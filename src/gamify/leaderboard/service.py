"""Leaderboard snapshot: full rebuilds and read-only projections.

The snapshot table is rebuilt wholesale by ``calculate_ranks`` and may lag
behind the latest point awards until the next rebuild.

Ranking is standard competition ranking: users with equal earned points share
a rank and the next distinct total skips past the whole tied group, so
``[300, 300, 200]`` ranks as ``[1, 1, 3]``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Leaderboard, User, UserLadderStatus
from gamify.ladder.service import list_levels
from gamify.points.service import get_user
from gamify.schemas import LeaderboardEntry, LeaderboardPage

logger = logging.getLogger(__name__)


def rank_users(users: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Rank users by earned points.

    Input: list of dicts with at least:
        - user_id: str
        - username: str
        - earned_points: int

    Output: the same dicts sorted by points DESC (username ASC, then
    user_id ASC for a stable order among ties), each augmented with:
        - rank: int (1-indexed, ties share a rank)
    """
    if not users:
        return []

    def sort_key(u: dict[str, Any]) -> tuple[int, str, str]:
        return (-u["earned_points"], u.get("username", ""), u["user_id"])

    ranked = sorted(users, key=sort_key)

    rank = 0
    previous_points: int | None = None
    for idx, u in enumerate(ranked):
        if u["earned_points"] != previous_points:
            rank = idx + 1
            previous_points = u["earned_points"]
        u["rank"] = rank

    return ranked


async def calculate_ranks(db: AsyncSession, now: datetime | None = None) -> int:
    """Rebuild the leaderboard from every user's earned points.

    Returns the number of rows written. Flushes only; the caller commits so
    the delete and the re-insert land together.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        select(
            User.id,
            User.username,
            User.department,
            User.earned_points,
            UserLadderStatus.current_level_id,
        ).outerjoin(UserLadderStatus, UserLadderStatus.user_id == User.id)
    )
    ranked = rank_users([
        {
            "user_id": row.id,
            "username": row.username,
            "department": row.department,
            "earned_points": row.earned_points,
            "current_level_id": row.current_level_id,
        }
        for row in result.all()
    ])

    levels_by_id = {level.id: level for level in await list_levels(db)}

    await db.execute(delete(Leaderboard))
    db.add_all([
        Leaderboard(
            user_id=u["user_id"],
            username=u["username"],
            department=u["department"],
            earned_points=u["earned_points"],
            current_level_id=u["current_level_id"],
            current_level=levels_by_id.get(u["current_level_id"]),
            rank=u["rank"],
            updated_at=now,
        )
        for u in ranked
    ])
    await db.flush()

    logger.info("Leaderboard rebuilt: %d users ranked", len(ranked))
    return len(ranked)


def _to_entry(row: Leaderboard) -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=row.rank,
        user_id=row.user_id,
        username=row.username,
        department=row.department,
        earned_points=row.earned_points,
        level=row.current_level.level if row.current_level else None,
        level_label=row.current_level.label if row.current_level else None,
    )


def _ordered():
    return select(Leaderboard).order_by(Leaderboard.rank.asc(), Leaderboard.username.asc())


async def get_top_users(db: AsyncSession, limit: int = 10) -> list[LeaderboardEntry]:
    result = await db.execute(_ordered().limit(limit))
    return [_to_entry(row) for row in result.unique().scalars().all()]


async def get_global_rankings(db: AsyncSession, page: int = 1, per_page: int = 20) -> LeaderboardPage:
    """Page through the whole snapshot. Pages are 1-indexed."""
    page = max(page, 1)
    total = (await db.execute(select(func.count()).select_from(Leaderboard))).scalar_one()
    result = await db.execute(_ordered().offset((page - 1) * per_page).limit(per_page))
    return LeaderboardPage(
        entries=[_to_entry(row) for row in result.unique().scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
    )


async def get_department_rankings(
    db: AsyncSession,
    department: str,
    page: int = 1,
    per_page: int = 20,
) -> LeaderboardPage:
    """Page through one department's rows. Entries keep their global rank."""
    page = max(page, 1)
    total = (
        await db.execute(
            select(func.count()).select_from(Leaderboard).where(Leaderboard.department == department)
        )
    ).scalar_one()
    result = await db.execute(
        _ordered()
        .where(Leaderboard.department == department)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return LeaderboardPage(
        entries=[_to_entry(row) for row in result.unique().scalars().all()],
        total=total,
        page=page,
        per_page=per_page,
        department=department,
    )


async def get_user_rank(db: AsyncSession, user_id: str) -> LeaderboardEntry | None:
    """Snapshot entry for a user, or None if they were not ranked yet."""
    await get_user(db, user_id)
    row = await db.get(Leaderboard, user_id)
    return _to_entry(row) if row else None
