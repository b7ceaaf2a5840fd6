"""Achievement processing driven by bus events."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamify.achievements.criteria import CriteriaEvaluator
from gamify.achievements.service import process_achievements
from gamify.db.models import Achievement
from gamify.events.bus import EventBus
from gamify.events.types import AchievementEarnedEvent, EventType, UserRef
from gamify.points.locks import UserLocks
from gamify.points.service import get_user

logger = structlog.get_logger()


class AchievementProcessor:
    """Legacy listener that re-evaluates achievements after task and points events.

    Awards are committed under the user's lock; ACHIEVEMENT_EARNED events are
    published afterwards.
    """

    interested_event_types = frozenset({EventType.TASK_COMPLETED.value, EventType.POINTS_EARNED.value})

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        locks: UserLocks,
        evaluator: CriteriaEvaluator,
    ) -> None:
        self.session_factory = session_factory
        self.bus = bus
        self.locks = locks
        self.evaluator = evaluator

    async def on_event(self, event_type: str, user: UserRef, payload: dict[str, Any]) -> None:
        await self.run(user.id, event_type, payload)

    async def run(self, user_id: str, event_type: str, payload: dict[str, Any] | None = None) -> list[Achievement]:
        """Award every newly met achievement and return the awarded definitions."""
        async with self.locks.for_user(user_id):
            async with self.session_factory() as db:
                try:
                    user = await get_user(db, user_id, for_update=True)
                    awarded = await process_achievements(db, self.evaluator, user, event_type, payload)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
                user_ref = UserRef.from_user(user)

        for achievement in awarded:
            logger.info(
                "achievement_earned",
                user_id=user_id,
                achievement=achievement.name,
                trigger=event_type,
            )
            await self.bus.publish_event(AchievementEarnedEvent(
                user=user_ref,
                achievement_id=achievement.id,
                achievement_name=achievement.name,
                metadata={"eventType": event_type},
            ))
        return awarded
