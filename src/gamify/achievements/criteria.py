"""Achievement criteria evaluation.

A criteria document is a JSON object whose ``type`` field selects the
strategy, for example::

    {"type": "POINTS_THRESHOLD", "threshold": 500}
    {"type": "TASK_COMPLETION_COUNT", "count": 10, "taskType": "BUG"}
    {"type": "CONSECUTIVE_DAYS", "days": 5}
    {"type": "LEVEL_BASED", "requiredLevel": 3}

Evaluation is fail-closed: a missing or malformed field makes the strategy
return False, and an unknown type evaluates to False. Validation at creation
time is strict about the known types and lets unknown types through.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from datetime import date, timedelta
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import PointsTransaction, TaskEvent, TaskStatus, User
from gamify.errors import InvalidCriteriaError
from gamify.ladder.service import get_user_level_number

logger = logging.getLogger(__name__)

_INT_TEXT = re.compile(r"-?[0-9]+")


class CriteriaType(str, enum.Enum):
    POINTS_THRESHOLD = "POINTS_THRESHOLD"
    TASK_COMPLETION_COUNT = "TASK_COMPLETION_COUNT"
    CONSECUTIVE_DAYS = "CONSECUTIVE_DAYS"
    LEVEL_BASED = "LEVEL_BASED"


def _int_field(criteria: dict[str, Any], key: str) -> int | None:
    """Read an integer field, accepting digit strings. Booleans are not integers here."""
    value = criteria.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INT_TEXT.fullmatch(value.strip()):
        return int(value)
    return None


def has_consecutive_days(dates: Iterable[date], required_days: int) -> bool:
    """True if ``dates`` contains a run of ``required_days`` consecutive calendar days.

    Duplicate dates are collapsed first, so repeated activity on one day
    neither extends nor breaks a run.
    """
    if required_days < 1:
        return False
    unique = sorted(set(dates))
    if len(unique) < required_days:
        return False

    run = 1
    for previous, current in zip(unique, unique[1:]):
        if current - previous == timedelta(days=1):
            run += 1
            if run >= required_days:
                return True
        else:
            run = 1
    return run >= required_days


class CriteriaStrategy(Protocol):
    required_fields: tuple[str, ...]

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any]) -> bool: ...


class PointsThresholdStrategy:
    required_fields = ("threshold",)

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any]) -> bool:
        threshold = _int_field(criteria, "threshold")
        if threshold is None:
            return False
        return user.earned_points >= threshold


class TaskCompletionCountStrategy:
    """Counts the user's COMPLETED task events, optionally of one ``taskType``."""

    required_fields = ("count",)

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any]) -> bool:
        required = _int_field(criteria, "count")
        if required is None:
            return False

        base = TaskEvent.user_id == user.id, TaskEvent.status == TaskStatus.COMPLETED.value
        task_type = criteria.get("taskType")
        if task_type is None:
            result = await db.execute(select(func.count(TaskEvent.id)).where(*base))
            completed = result.scalar_one()
        else:
            # Filtered in Python so the JSON lookup works on every backend.
            result = await db.execute(select(TaskEvent.event_metadata).where(*base))
            completed = sum(
                1 for metadata in result.scalars()
                if (metadata or {}).get("taskType") == task_type
            )
        return completed >= required


class ConsecutiveDaysStrategy:
    """Looks for a streak of consecutive calendar days with point activity."""

    required_fields = ("days",)

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any]) -> bool:
        days = _int_field(criteria, "days")
        if days is None:
            return False
        result = await db.execute(
            select(PointsTransaction.created_at).where(PointsTransaction.user_id == user.id)
        )
        dates = {ts.date() for ts in result.scalars() if ts is not None}
        return has_consecutive_days(dates, days)


class LevelBasedStrategy:
    required_fields = ("requiredLevel",)

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any]) -> bool:
        required = _int_field(criteria, "requiredLevel")
        if required is None:
            return False
        level = await get_user_level_number(db, user.id)
        if level is None:
            return False
        return level >= required


_MINIMUMS: dict[str, int] = {
    "threshold": 0,
    "count": 1,
    "days": 1,
    "requiredLevel": 1,
}


class CriteriaEvaluator:
    """Dispatch table from criteria type to strategy.

    The table must cover every ``CriteriaType``; a gap is a startup error.
    """

    def __init__(self, strategies: dict[CriteriaType, CriteriaStrategy] | None = None) -> None:
        if strategies is None:
            strategies = {
                CriteriaType.POINTS_THRESHOLD: PointsThresholdStrategy(),
                CriteriaType.TASK_COMPLETION_COUNT: TaskCompletionCountStrategy(),
                CriteriaType.CONSECUTIVE_DAYS: ConsecutiveDaysStrategy(),
                CriteriaType.LEVEL_BASED: LevelBasedStrategy(),
            }
        missing = set(CriteriaType) - set(strategies)
        if missing:
            raise ValueError(f"No criteria strategy for: {sorted(m.value for m in missing)}")
        self._strategies = dict(strategies)

    def strategy_for(self, type_tag: Any) -> CriteriaStrategy | None:
        try:
            return self._strategies[CriteriaType(type_tag)]
        except ValueError:
            return None

    async def evaluate(self, db: AsyncSession, user: User, criteria: dict[str, Any] | None) -> bool:
        if not isinstance(criteria, dict):
            return False
        strategy = self.strategy_for(criteria.get("type"))
        if strategy is None:
            logger.debug("Unknown criteria type %r, treating as not met", criteria.get("type"))
            return False
        return await strategy.evaluate(db, user, criteria)

    def validate(self, criteria: Any) -> None:
        """Reject malformed criteria before an achievement is stored.

        Raises InvalidCriteriaError.
        """
        if not isinstance(criteria, dict):
            raise InvalidCriteriaError("Criteria must be a JSON object")
        type_tag = criteria.get("type")
        if not isinstance(type_tag, str) or not type_tag:
            raise InvalidCriteriaError("Criteria must have a string 'type' field")

        strategy = self.strategy_for(type_tag)
        if strategy is None:
            logger.warning("Storing criteria with unknown type %r; it will never be met", type_tag)
            return

        for name in strategy.required_fields:
            if name not in criteria:
                raise InvalidCriteriaError(f"{type_tag} criteria requires '{name}'")
            value = _int_field(criteria, name)
            if value is None:
                raise InvalidCriteriaError(f"'{name}' must be an integer")
            if value < _MINIMUMS[name]:
                raise InvalidCriteriaError(f"'{name}' must be at least {_MINIMUMS[name]}")

        if "taskType" in criteria and not isinstance(criteria["taskType"], str):
            raise InvalidCriteriaError("'taskType' must be a string")
