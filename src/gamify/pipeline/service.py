"""Task-event processing: run a command chain in one transaction, then publish."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamify.db.models import TaskEvent
from gamify.events.bus import EventBus
from gamify.pipeline.commands import TaskCommandFactory
from gamify.pipeline.steps import TaskContext
from gamify.points.locks import UserLocks
from gamify.points.service import get_user

logger = logging.getLogger(__name__)


class TaskEventProcessor:
    """Turns task-lifecycle notifications into store mutations and domain events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        locks: UserLocks,
        factory: TaskCommandFactory,
    ) -> None:
        self.session_factory = session_factory
        self.bus = bus
        self.locks = locks
        self.factory = factory

    async def process(
        self,
        user_id: str,
        task_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> TaskEvent:
        """Run the chain for ``event_type`` and return the recorded TaskEvent.

        Every step commits together or not at all. The TaskCompleted or
        TaskAssigned event is published after the commit, outside the user
        lock; a subscriber failure reaches the caller but cannot undo the
        committed work.
        """
        payload = dict(payload or {})
        command = self.factory.create_command(event_type, payload)

        async with self.locks.for_user(user_id):
            async with self.session_factory() as db:
                try:
                    user = await get_user(db, user_id, for_update=True)
                    ctx = TaskContext(
                        db=db,
                        user=user,
                        task_id=task_id,
                        event_type=command.event_type.value,
                        payload=payload,
                    )
                    await command.execute(ctx)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
                event = command.domain_event(ctx)

        logger.info(
            "Processed %s for user %s task %s: %d points (%s)",
            command.event_type.value, user_id, task_id, ctx.points,
            ", ".join(command.step_names),
        )
        await self.bus.publish_event(event)
        return ctx.task_event
