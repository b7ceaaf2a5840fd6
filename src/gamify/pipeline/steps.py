"""Steps of the task-event pipeline.

Each step mutates the store through the shared session in ``TaskContext`` and
only flushes. The processor owns the transaction, so a failing step leaves
nothing behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import PointsTransaction, TaskEvent, TaskStatus, User
from gamify.errors import ValidationError
from gamify.ladder.service import update_user_ladder_status
from gamify.pipeline.strategies import TaskPointsStrategy
from gamify.points.service import credit_points
from gamify.schemas import LadderStatusView


@dataclass
class TaskContext:
    """State shared by the steps of one command run."""

    db: AsyncSession
    user: User
    task_id: str
    event_type: str
    payload: dict[str, Any]
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    points: int = 0
    task_event: TaskEvent | None = None
    transaction: PointsTransaction | None = None
    ladder_status: LadderStatusView | None = None


def _parse_due_date(raw: Any) -> datetime:
    if not isinstance(raw, str):
        raise ValidationError(f"dueDate must be an ISO-8601 string, got {raw!r}")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid dueDate: {raw}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CalculatePoints:
    """Records the COMPLETED task event and works out the points it earns."""

    def __init__(self, strategy: TaskPointsStrategy) -> None:
        self.strategy = strategy

    async def run(self, ctx: TaskContext) -> None:
        ctx.points = self.strategy.calculate_points(ctx.task_id, ctx.payload)
        ctx.task_event = TaskEvent(
            user_id=ctx.user.id,
            task_id=ctx.task_id,
            event_type=ctx.event_type,
            status=TaskStatus.COMPLETED.value,
            points_earned=ctx.points,
            completion_time=ctx.now,
            event_metadata=dict(ctx.payload),
            created_at=ctx.now,
        )
        ctx.db.add(ctx.task_event)
        await ctx.db.flush()


class RecordTransaction:
    """Appends the ledger entry and raises both point balances."""

    async def run(self, ctx: TaskContext) -> None:
        metadata: dict[str, Any] = {
            "taskId": ctx.task_id,
            "eventId": ctx.task_event.id if ctx.task_event else None,
            "eventType": ctx.event_type,
        }
        if "priority" in ctx.payload:
            metadata["priority"] = ctx.payload["priority"]
        ctx.transaction = await credit_points(
            ctx.db, ctx.user, ctx.points, ctx.event_type, metadata, ctx.now,
        )


class UpdateLadderStatus:
    async def run(self, ctx: TaskContext) -> None:
        ctx.ladder_status = await update_user_ladder_status(ctx.db, ctx.user.id, ctx.now)


class RecordTaskAssigned:
    """Records an ASSIGNED task event. No points change hands."""

    async def run(self, ctx: TaskContext) -> None:
        due_date = None
        if ctx.payload.get("dueDate") is not None:
            due_date = _parse_due_date(ctx.payload["dueDate"])
        ctx.task_event = TaskEvent(
            user_id=ctx.user.id,
            task_id=ctx.task_id,
            event_type=ctx.event_type,
            status=TaskStatus.ASSIGNED.value,
            points_earned=0,
            assigned_at=ctx.now,
            due_date=due_date,
            event_metadata=dict(ctx.payload),
            created_at=ctx.now,
        )
        ctx.db.add(ctx.task_event)
        await ctx.db.flush()
