"""Redemption transition table and state handlers."""

from __future__ import annotations

import pytest

from gamify.db.models import RedemptionStatus
from gamify.errors import InvalidTransitionError, ValidationError
from gamify.redemptions.states import (
    STATE_HANDLERS,
    TRANSITIONS,
    state_for_status,
    validate_transition,
)

TERMINAL = [RedemptionStatus.COMPLETED, RedemptionStatus.FAILED, RedemptionStatus.CANCELLED]


class TestRedemptionTransitions:
    """PROCESSING is the only status with outgoing transitions."""

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(RedemptionStatus)
        assert set(STATE_HANDLERS) == set(RedemptionStatus)

    @pytest.mark.parametrize("target", TERMINAL)
    def test_processing_reaches_each_terminal(self, target):
        validate_transition(RedemptionStatus.PROCESSING, target)

    @pytest.mark.parametrize("current", TERMINAL)
    def test_terminal_statuses_have_no_exits(self, current):
        assert TRANSITIONS[current] == frozenset()
        for target in RedemptionStatus:
            with pytest.raises(InvalidTransitionError, match="Invalid transition"):
                validate_transition(current, target)

    def test_processing_to_processing_rejected(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(RedemptionStatus.PROCESSING, RedemptionStatus.PROCESSING)


class TestStateLookup:
    """Each persisted status maps to its own handler."""

    @pytest.mark.parametrize("status", list(RedemptionStatus))
    def test_lookup_returns_matching_handler(self, status):
        assert state_for_status(status.value).status is status

    def test_terminal_lookup_is_terminal(self):
        assert state_for_status("CANCELLED").is_terminal is True
        assert state_for_status("PROCESSING").is_terminal is False

    def test_process_is_noop_while_processing(self):
        assert state_for_status("PROCESSING").process() is None

    @pytest.mark.parametrize("status", ["COMPLETED", "FAILED", "CANCELLED"])
    def test_process_rejected_on_terminal(self, status):
        with pytest.raises(InvalidTransitionError):
            state_for_status(status).process()

    def test_unknown_status(self):
        with pytest.raises(ValidationError, match="Unknown redemption status"):
            state_for_status("SHIPPED")
