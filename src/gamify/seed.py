"""Seed data: a starter ladder and a starter set of achievements.

Both seed functions are idempotent. Rows that already exist (matched by level
number or achievement name) are left as they are.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import Achievement, LadderLevel

logger = logging.getLogger(__name__)

LADDER_SEED_DATA: list[dict] = [
    {"level": 1, "label": "Beginner", "points_required": 0},
    {"level": 2, "label": "Intermediate", "points_required": 100},
    {"level": 3, "label": "Advanced", "points_required": 300},
    {"level": 4, "label": "Expert", "points_required": 600},
    {"level": 5, "label": "Master", "points_required": 1000},
]

ACHIEVEMENT_SEED_DATA: list[dict] = [
    {
        "name": "First Steps",
        "description": "Earn your first 10 points",
        "criteria": {"type": "POINTS_THRESHOLD", "threshold": 10},
    },
    {
        "name": "Point Collector",
        "description": "Earn 500 points in total",
        "criteria": {"type": "POINTS_THRESHOLD", "threshold": 500},
    },
    {
        "name": "Task Starter",
        "description": "Complete your first task",
        "criteria": {"type": "TASK_COMPLETION_COUNT", "count": 1},
    },
    {
        "name": "Task Master",
        "description": "Complete 10 tasks",
        "criteria": {"type": "TASK_COMPLETION_COUNT", "count": 10},
    },
    {
        "name": "Bug Squasher",
        "description": "Complete 5 bug-fix tasks",
        "criteria": {"type": "TASK_COMPLETION_COUNT", "count": 5, "taskType": "BUG"},
    },
    {
        "name": "On a Roll",
        "description": "Earn points on 3 consecutive days",
        "criteria": {"type": "CONSECUTIVE_DAYS", "days": 3},
    },
    {
        "name": "Week Warrior",
        "description": "Earn points on 7 consecutive days",
        "criteria": {"type": "CONSECUTIVE_DAYS", "days": 7},
    },
    {
        "name": "Climber",
        "description": "Reach ladder level 3",
        "criteria": {"type": "LEVEL_BASED", "requiredLevel": 3},
    },
]


async def seed_ladder_levels(db: AsyncSession) -> int:
    """Insert missing ladder levels. Returns number of levels inserted."""
    existing = set((await db.execute(select(LadderLevel.level))).scalars().all())
    inserted = 0
    for level_data in LADDER_SEED_DATA:
        if level_data["level"] in existing:
            continue
        db.add(LadderLevel(**level_data))
        inserted += 1
    await db.flush()
    logger.info("Seeded %d ladder levels", inserted)
    return inserted


async def seed_achievements(db: AsyncSession) -> int:
    """Insert missing achievements. Returns number of achievements inserted."""
    existing = set((await db.execute(select(Achievement.name))).scalars().all())
    inserted = 0
    for achievement_data in ACHIEVEMENT_SEED_DATA:
        if achievement_data["name"] in existing:
            continue
        db.add(Achievement(**achievement_data))
        inserted += 1
    await db.flush()
    logger.info("Seeded %d achievements", inserted)
    return inserted
