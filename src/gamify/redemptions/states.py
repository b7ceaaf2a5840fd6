"""Redemption lifecycle.

PROCESSING is the only non-terminal status. Every status has an explicit
entry in the transition table and its own state handler, so looking up a
terminal redemption yields a terminal handler rather than PROCESSING.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from gamify.db.models import RedemptionStatus, RewardRedemption
from gamify.errors import InvalidTransitionError, ValidationError

TRANSITIONS: dict[RedemptionStatus, frozenset[RedemptionStatus]] = {
    RedemptionStatus.PROCESSING: frozenset({
        RedemptionStatus.COMPLETED,
        RedemptionStatus.FAILED,
        RedemptionStatus.CANCELLED,
    }),
    RedemptionStatus.COMPLETED: frozenset(),
    RedemptionStatus.FAILED: frozenset(),
    RedemptionStatus.CANCELLED: frozenset(),
}

if set(TRANSITIONS) != set(RedemptionStatus):
    raise RuntimeError("Redemption transition table does not cover every status")


def validate_transition(current: RedemptionStatus, target: RedemptionStatus) -> None:
    """Raises InvalidTransitionError if ``target`` is not reachable from ``current``."""
    valid = TRANSITIONS[current]
    if target not in valid:
        raise InvalidTransitionError(current.value, target.value, sorted(s.value for s in valid))


class RedemptionState:
    """Handler for one persisted status."""

    status: RedemptionStatus

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.status]

    def process(self) -> None:
        """Advance work on the redemption. Only meaningful while PROCESSING."""
        raise InvalidTransitionError(self.status.value, RedemptionStatus.PROCESSING.value, [])


class ProcessingState(RedemptionState):
    status = RedemptionStatus.PROCESSING

    def process(self) -> None:
        # Fulfilment happens outside the engine; nothing to do until it reports back.
        return None


class CompletedState(RedemptionState):
    status = RedemptionStatus.COMPLETED


class FailedState(RedemptionState):
    status = RedemptionStatus.FAILED


class CancelledState(RedemptionState):
    status = RedemptionStatus.CANCELLED


STATE_HANDLERS: dict[RedemptionStatus, RedemptionState] = {
    state.status: state
    for state in (ProcessingState(), CompletedState(), FailedState(), CancelledState())
}

if set(STATE_HANDLERS) != set(RedemptionStatus):
    raise RuntimeError("Redemption state handlers do not cover every status")


def state_for_status(status: str) -> RedemptionState:
    try:
        return STATE_HANDLERS[RedemptionStatus(status)]
    except ValueError:
        raise ValidationError(f"Unknown redemption status: {status}") from None


class RedemptionObserver(Protocol):
    async def on_created(self, db: AsyncSession, redemption: RewardRedemption) -> None: ...

    async def on_status_changed(
        self,
        db: AsyncSession,
        redemption: RewardRedemption,
        old_status: str,
        new_status: str,
    ) -> None: ...


class RedemptionStateMachine:
    """Applies transitions and notifies observers in registration order.

    Observers share the caller's session, so a transition and everything the
    observers write commit or roll back together.
    """

    def __init__(self, observers: Sequence[RedemptionObserver] = ()) -> None:
        self._observers: tuple[RedemptionObserver, ...] = tuple(observers)

    @property
    def observers(self) -> tuple[RedemptionObserver, ...]:
        return self._observers

    def add_observer(self, observer: RedemptionObserver) -> None:
        if observer not in self._observers:
            self._observers = (*self._observers, observer)

    async def notify_created(self, db: AsyncSession, redemption: RewardRedemption) -> None:
        for observer in self._observers:
            await observer.on_created(db, redemption)

    async def transition(
        self,
        db: AsyncSession,
        redemption: RewardRedemption,
        target: RedemptionStatus,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> RewardRedemption:
        current = state_for_status(redemption.status).status
        validate_transition(current, target)
        if now is None:
            now = datetime.now(timezone.utc)

        redemption.status = target.value
        redemption.updated_at = now
        if reason is not None:
            redemption.failure_reason = reason
        await db.flush()

        for observer in self._observers:
            await observer.on_status_changed(db, redemption, current.value, target.value)
        return redemption

    def process(self, redemption: RewardRedemption) -> None:
        state_for_status(redemption.status).process()

    async def complete(self, db: AsyncSession, redemption: RewardRedemption) -> RewardRedemption:
        return await self.transition(db, redemption, RedemptionStatus.COMPLETED)

    async def fail(self, db: AsyncSession, redemption: RewardRedemption, reason: str) -> RewardRedemption:
        return await self.transition(db, redemption, RedemptionStatus.FAILED, reason=reason)

    async def cancel(self, db: AsyncSession, redemption: RewardRedemption) -> RewardRedemption:
        return await self.transition(db, redemption, RedemptionStatus.CANCELLED)
