"""ORM models for the gamification store.

PointsTransaction, TaskEvent and UserAchievement rows are append-only.
UserLadderStatus and Leaderboard rows are derived and overwritten by their
recompute operations.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gamify.db.base import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RedemptionStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="EMPLOYEE")
    department: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Lifetime total, never decreases.
    earned_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Spendable balance.
    available_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Points ledger
# ---------------------------------------------------------------------------


class PointsTransaction(Base):
    """Append-only points ledger. Positive for awards/refunds, negative for spends."""

    __tablename__ = "points_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Task events
# ---------------------------------------------------------------------------


class TaskEvent(Base):
    """One row per task-lifecycle notification."""

    __tablename__ = "task_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    event_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Achievement definition with a tagged criteria document."""

    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    criteria: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserAchievement(Base):
    """Earned achievement. The composite key forbids re-awarding."""

    __tablename__ = "user_achievements"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    achievement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("achievements.id", ondelete="CASCADE"), primary_key=True,
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    achievement_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="joined")


# ---------------------------------------------------------------------------
# Ladder
# ---------------------------------------------------------------------------


class LadderLevel(Base):
    """Named tier unlocked once earned points reach points_required."""

    __tablename__ = "ladder_levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    points_required: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UserLadderStatus(Base):
    """Derived ladder position for a user."""

    __tablename__ = "user_ladder_status"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    current_level_id: Mapped[int] = mapped_column(Integer, ForeignKey("ladder_levels.id"), nullable=False)
    earned_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_to_next_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    current_level: Mapped[LadderLevel] = relationship("LadderLevel", lazy="joined")


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class Leaderboard(Base):
    """Rank snapshot, fully rebuilt by the ranking job."""

    __tablename__ = "leaderboard"

    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    department: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    earned_points: Mapped[int] = mapped_column(Integer, nullable=False)
    current_level_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("ladder_levels.id"), nullable=True)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    current_level: Mapped[LadderLevel | None] = relationship("LadderLevel", lazy="joined")


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


class Reward(Base):
    """Redeemable reward priced in available points."""

    __tablename__ = "rewards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cost_in_points: Mapped[int] = mapped_column(Integer, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RewardRedemption(Base):
    """Redemption lifecycle row. Created PROCESSING, moved once to a terminal status."""

    __tablename__ = "reward_redemptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id: Mapped[str] = mapped_column(String(36), ForeignKey("rewards.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RedemptionStatus.PROCESSING.value)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user: Mapped[User] = relationship("User", lazy="joined")
    reward: Mapped[Reward] = relationship("Reward", lazy="joined")
