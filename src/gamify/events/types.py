"""Event vocabulary: legacy event-type tags and the closed set of domain events.

Each domain event is an immutable record tagged with its ``EventType`` and
knows how to flatten itself into the legacy ``(event_type, user, payload)``
shape consumed by string-keyed listeners.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

from gamify.db.models import User


class EventType(str, enum.Enum):
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    POINTS_EARNED = "POINTS_EARNED"
    POINTS_SPENT = "POINTS_SPENT"
    ACHIEVEMENT_EARNED = "ACHIEVEMENT_EARNED"


@dataclass(frozen=True)
class UserRef:
    """Detached snapshot of the user an event is about."""

    id: str
    username: str
    department: str | None = None

    @classmethod
    def from_user(cls, user: User) -> UserRef:
        return cls(id=user.id, username=user.username, department=user.department)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_type: ClassVar[EventType]

    user: UserRef
    occurred_at: datetime = field(default_factory=_utcnow)

    def legacy_payload(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class TaskCompletedEvent(DomainEvent):
    event_type: ClassVar[EventType] = EventType.TASK_COMPLETED

    task_id: str
    task_event_id: str
    points_awarded: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def legacy_payload(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "eventId": self.task_event_id,
            "pointsAwarded": self.points_awarded,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, kw_only=True)
class TaskAssignedEvent(DomainEvent):
    event_type: ClassVar[EventType] = EventType.TASK_ASSIGNED

    task_id: str
    task_event_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def legacy_payload(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "eventId": self.task_event_id,
            "pointsAwarded": 0,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, kw_only=True)
class PointsEarnedEvent(DomainEvent):
    event_type: ClassVar[EventType] = EventType.POINTS_EARNED

    points: int
    new_total: int
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def legacy_payload(self) -> dict[str, Any]:
        return {
            "points": self.points,
            "newTotal": self.new_total,
            "source": self.source,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, kw_only=True)
class PointsSpentEvent(DomainEvent):
    event_type: ClassVar[EventType] = EventType.POINTS_SPENT

    points: int
    new_balance: int
    source: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def legacy_payload(self) -> dict[str, Any]:
        return {
            "points": self.points,
            "newTotal": self.new_balance,
            "source": self.source,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, kw_only=True)
class AchievementEarnedEvent(DomainEvent):
    event_type: ClassVar[EventType] = EventType.ACHIEVEMENT_EARNED

    achievement_id: str
    achievement_name: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def legacy_payload(self) -> dict[str, Any]:
        return {
            "achievementId": self.achievement_id,
            "achievementName": self.achievement_name,
            "metadata": dict(self.metadata),
        }


DOMAIN_EVENTS: dict[EventType, type[DomainEvent]] = {
    cls.event_type: cls
    for cls in (
        TaskCompletedEvent,
        TaskAssignedEvent,
        PointsEarnedEvent,
        PointsSpentEvent,
        AchievementEarnedEvent,
    )
}

_missing = set(EventType) - set(DOMAIN_EVENTS)
if _missing:
    raise RuntimeError(f"Event types without a domain event class: {sorted(m.value for m in _missing)}")
