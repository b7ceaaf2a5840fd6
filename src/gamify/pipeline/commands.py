"""Command chains for task events.

A command is an ordered list of steps run inside one unit of work. The
factory maps each task-event type to the chain that handles it.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from gamify.errors import UnsupportedEventTypeError
from gamify.events.types import DomainEvent, TaskAssignedEvent, TaskCompletedEvent, UserRef
from gamify.pipeline.steps import (
    CalculatePoints,
    RecordTaskAssigned,
    RecordTransaction,
    TaskContext,
    UpdateLadderStatus,
)
from gamify.pipeline.strategies import TaskPointsStrategy


class TaskEventType(str, enum.Enum):
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_ASSIGNED = "TASK_ASSIGNED"


class Step(Protocol):
    async def run(self, ctx: TaskContext) -> None: ...


def _task_completed_event(ctx: TaskContext) -> DomainEvent:
    return TaskCompletedEvent(
        user=UserRef.from_user(ctx.user),
        task_id=ctx.task_id,
        task_event_id=ctx.task_event.id,
        points_awarded=ctx.points,
        metadata=dict(ctx.payload),
        occurred_at=ctx.now,
    )


def _task_assigned_event(ctx: TaskContext) -> DomainEvent:
    return TaskAssignedEvent(
        user=UserRef.from_user(ctx.user),
        task_id=ctx.task_id,
        task_event_id=ctx.task_event.id,
        metadata=dict(ctx.payload),
        occurred_at=ctx.now,
    )


_EVENT_BUILDERS: dict[TaskEventType, Callable[[TaskContext], DomainEvent]] = {
    TaskEventType.TASK_COMPLETED: _task_completed_event,
    TaskEventType.TASK_ASSIGNED: _task_assigned_event,
}


class TaskCommand:
    """Ordered steps for one task-event type."""

    def __init__(self, event_type: TaskEventType, steps: list[Step]) -> None:
        self.event_type = event_type
        self.steps = steps

    @property
    def step_names(self) -> list[str]:
        return [type(step).__name__ for step in self.steps]

    async def execute(self, ctx: TaskContext) -> None:
        for step in self.steps:
            await step.run(ctx)

    def domain_event(self, ctx: TaskContext) -> DomainEvent:
        """Event to publish once the command's work is committed."""
        return _EVENT_BUILDERS[self.event_type](ctx)


class TaskCommandFactory:
    """Builds the command chain for a task-event type."""

    def __init__(self, points_strategy: TaskPointsStrategy) -> None:
        self.points_strategy = points_strategy
        self._builders: dict[TaskEventType, Callable[[Mapping[str, Any]], list[Step]]] = {
            TaskEventType.TASK_COMPLETED: self._task_completed_steps,
            TaskEventType.TASK_ASSIGNED: self._task_assigned_steps,
        }
        for table in (self._builders, _EVENT_BUILDERS):
            missing = set(TaskEventType) - set(table)
            if missing:
                raise ValueError(f"No command chain for: {sorted(m.value for m in missing)}")

    def _task_completed_steps(self, payload: Mapping[str, Any]) -> list[Step]:
        steps: list[Step] = [CalculatePoints(self.points_strategy), RecordTransaction()]
        if payload.get("skip_ladder_update") is not True:
            steps.append(UpdateLadderStatus())
        return steps

    def _task_assigned_steps(self, payload: Mapping[str, Any]) -> list[Step]:
        return [RecordTaskAssigned()]

    def create_command(self, event_type: str, payload: Mapping[str, Any]) -> TaskCommand:
        """Raises UnsupportedEventTypeError for a type with no chain."""
        try:
            kind = TaskEventType(event_type)
        except ValueError:
            raise UnsupportedEventTypeError(str(event_type)) from None
        return TaskCommand(kind, self._builders[kind](payload))
