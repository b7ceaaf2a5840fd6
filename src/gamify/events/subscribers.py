"""Default domain-event subscribers wired by the engine at startup."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamify.db.models import UserLadderStatus
from gamify.events.types import (
    AchievementEarnedEvent,
    DomainEvent,
    PointsEarnedEvent,
    PointsSpentEvent,
    TaskCompletedEvent,
)
from gamify.ladder.service import update_user_ladder_status
from gamify.notifications.sink import NotificationSink
from gamify.points.locks import UserLocks
from gamify.points.service import get_user

logger = structlog.get_logger()


class LadderStatusSubscriber:
    """Brings the user's ladder status in line with their earned points.

    Awards that already updated the ladder in their own transaction leave a
    fresh snapshot behind, and this subscriber then has nothing to do.
    """

    interested_in = (PointsEarnedEvent,)

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], locks: UserLocks) -> None:
        self.session_factory = session_factory
        self.locks = locks

    async def handle(self, event: DomainEvent) -> None:
        user_id = event.user.id
        async with self.locks.for_user(user_id):
            async with self.session_factory() as db:
                user = await get_user(db, user_id)
                status = await db.get(UserLadderStatus, user_id)
                if status is not None and status.earned_points == user.earned_points:
                    return
                view = await update_user_ladder_status(db, user_id)
                await db.commit()
        logger.info("ladder_status_updated", user_id=user_id, level=view.current_level)


class PointsEventSubscriber:
    interested_in = (PointsEarnedEvent, PointsSpentEvent)

    async def handle(self, event: DomainEvent) -> None:
        logger.info(
            "points_event",
            event_type=event.event_type.value,
            user_id=event.user.id,
            **event.legacy_payload(),
        )


class TaskCompletedEventSubscriber:
    interested_in = (TaskCompletedEvent,)

    async def handle(self, event: DomainEvent) -> None:
        logger.info(
            "task_completed",
            user_id=event.user.id,
            task_id=event.task_id,
            points_awarded=event.points_awarded,
        )


class NotificationSubscriber:
    """Forwards point and achievement events to the notification sink."""

    interested_in = (PointsEarnedEvent, PointsSpentEvent, AchievementEarnedEvent)

    def __init__(self, sink: NotificationSink) -> None:
        self.sink = sink
        self._formatters = {
            PointsEarnedEvent: self._points_earned,
            PointsSpentEvent: self._points_spent,
            AchievementEarnedEvent: self._achievement_earned,
        }
        if set(self._formatters) != set(self.interested_in):
            raise ValueError("NotificationSubscriber formatters do not match its interests")

    async def handle(self, event: DomainEvent) -> None:
        channel, message = self._formatters[type(event)](event)
        await self.sink.send(channel, message)

    def _points_earned(self, event: PointsEarnedEvent) -> tuple[str, dict[str, Any]]:
        return "points", {
            "userId": event.user.id,
            "eventType": event.event_type.value,
            "points": event.points,
            "newBalance": event.new_total,
            "source": event.source,
        }

    def _points_spent(self, event: PointsSpentEvent) -> tuple[str, dict[str, Any]]:
        return "points", {
            "userId": event.user.id,
            "eventType": event.event_type.value,
            "points": event.points,
            "newBalance": event.new_balance,
            "source": event.source,
        }

    def _achievement_earned(self, event: AchievementEarnedEvent) -> tuple[str, dict[str, Any]]:
        return "achievements", {
            "userId": event.user.id,
            "eventType": event.event_type.value,
            "achievementId": event.achievement_id,
            "achievementName": event.achievement_name,
            "metadata": dict(event.metadata),
        }
