"""Point calculation for completed tasks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class TaskPointsStrategy(Protocol):
    def calculate_points(self, task_id: str, payload: Mapping[str, Any]) -> int: ...


class PriorityPointsStrategy:
    """Looks up the payload's ``priority`` in a points table.

    The lookup is case-insensitive. A missing, non-string or unknown priority
    earns ``default_points``.
    """

    def __init__(self, table: Mapping[str, int], default_points: int) -> None:
        self.table = {key.upper(): value for key, value in table.items()}
        self.default_points = default_points

    def calculate_points(self, task_id: str, payload: Mapping[str, Any]) -> int:
        priority = payload.get("priority")
        if not isinstance(priority, str):
            return self.default_points
        return self.table.get(priority.strip().upper(), self.default_points)
