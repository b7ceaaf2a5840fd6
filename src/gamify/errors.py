"""Error taxonomy for the gamification engine.

NotFound errors are surfaced to the caller and never retried. Validation
errors are raised before any mutation. Unsupported task-event types are fatal
to the pipeline.
"""

from __future__ import annotations


class GamifyError(Exception):
    """Base error for engine operations."""


# ---------------------------------------------------------------------------
# NotFound
# ---------------------------------------------------------------------------


class NotFoundError(GamifyError):
    """A referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: str | int):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class UserNotFoundError(NotFoundError):
    entity = "User"


class AchievementNotFoundError(NotFoundError):
    entity = "Achievement"


class RewardNotFoundError(NotFoundError):
    entity = "Reward"


class RedemptionNotFoundError(NotFoundError):
    entity = "Redemption"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(GamifyError):
    """Input rejected before any state was changed."""


class DuplicateAchievementError(ValidationError):
    """An achievement with the same name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Achievement with name '{name}' already exists")


class InvalidCriteriaError(ValidationError):
    """Criteria document is malformed or missing a required field."""


class InsufficientPointsError(ValidationError):
    """User does not hold enough available points for a spend."""

    def __init__(self, user_id: str, requested: int, available: int):
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"User {user_id} has {available} available points, "
            f"{requested} requested"
        )


class InvalidTransitionError(ValidationError):
    """Redemption state transition is not allowed from the current status."""

    def __init__(self, current: str, target: str, valid: list[str]):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid transition: {current} -> {target}. "
            f"Valid transitions: {valid}"
        )


class RewardUnavailableError(ValidationError):
    """Reward exists but is not currently redeemable."""

    def __init__(self, reward_id: str):
        self.reward_id = reward_id
        super().__init__(f"Reward is not available: {reward_id}")


# ---------------------------------------------------------------------------
# Unsupported
# ---------------------------------------------------------------------------


class UnsupportedEventTypeError(GamifyError):
    """Task-event type has no command chain."""

    def __init__(self, event_type: str):
        self.event_type = event_type
        super().__init__(f"Unsupported event type: {event_type}")


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBusError(GamifyError):
    """Listener or subscriber registry misuse."""
