"""Points strategy and task command chains."""

from __future__ import annotations

import pytest

from gamify.errors import UnsupportedEventTypeError
from gamify.pipeline.commands import TaskCommandFactory, TaskEventType
from gamify.pipeline.strategies import PriorityPointsStrategy

TABLE = {"LOW": 10, "MEDIUM": 20, "HIGH": 30, "CRITICAL": 50}


@pytest.fixture
def strategy():
    return PriorityPointsStrategy(TABLE, default_points=15)


class TestPriorityPointsStrategy:
    @pytest.mark.parametrize(
        "priority,expected",
        [("LOW", 10), ("MEDIUM", 20), ("HIGH", 30), ("CRITICAL", 50), ("high", 30), (" Low ", 10)],
    )
    def test_known_priorities(self, strategy, priority, expected):
        assert strategy.calculate_points("t-1", {"priority": priority}) == expected

    @pytest.mark.parametrize("payload", [{}, {"priority": "URGENT"}, {"priority": 3}, {"priority": None}])
    def test_default_points(self, strategy, payload):
        assert strategy.calculate_points("t-1", payload) == 15


class TestTaskCommandFactory:
    """Chains per task-event type."""

    def test_completed_chain(self, strategy):
        command = TaskCommandFactory(strategy).create_command("TASK_COMPLETED", {})
        assert command.event_type is TaskEventType.TASK_COMPLETED
        assert command.step_names == ["CalculatePoints", "RecordTransaction", "UpdateLadderStatus"]

    def test_skip_ladder_update_drops_ladder_step(self, strategy):
        command = TaskCommandFactory(strategy).create_command("TASK_COMPLETED", {"skip_ladder_update": True})
        assert command.step_names == ["CalculatePoints", "RecordTransaction"]

    @pytest.mark.parametrize("flag", [False, "true", 1, None])
    def test_only_literal_true_skips(self, strategy, flag):
        command = TaskCommandFactory(strategy).create_command("TASK_COMPLETED", {"skip_ladder_update": flag})
        assert "UpdateLadderStatus" in command.step_names

    def test_assigned_chain(self, strategy):
        command = TaskCommandFactory(strategy).create_command("TASK_ASSIGNED", {})
        assert command.step_names == ["RecordTaskAssigned"]

    @pytest.mark.parametrize("event_type", ["TASK_DELETED", "task_completed", ""])
    def test_unsupported_type(self, strategy, event_type):
        with pytest.raises(UnsupportedEventTypeError, match="Unsupported event type"):
            TaskCommandFactory(strategy).create_command(event_type, {})
