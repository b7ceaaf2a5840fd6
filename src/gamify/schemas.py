"""Pydantic views returned by engine operations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Ladder ---


class LadderLevelView(BaseModel):
    level: int
    label: str
    points_required: int

    model_config = {"from_attributes": True}


class LadderStatusView(BaseModel):
    user_id: str
    current_level: int
    level_label: str
    earned_points: int
    points_to_next_level: int
    next_level: int | None = None
    next_level_label: str | None = None
    updated_at: datetime


# --- Achievements ---


class AchievementView(BaseModel):
    id: str
    name: str
    description: str
    criteria: dict

    model_config = {"from_attributes": True}


class EarnedAchievementView(BaseModel):
    achievement_id: str
    name: str
    description: str
    earned_at: datetime
    metadata: dict = {}


class UserAchievementsView(BaseModel):
    user_id: str
    earned: list[EarnedAchievementView]
    total_available: int
    total_earned: int


# --- Leaderboard ---


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    username: str
    department: str | None = None
    earned_points: int
    level: int | None = None
    level_label: str | None = None


class LeaderboardPage(BaseModel):
    entries: list[LeaderboardEntry]
    total: int
    page: int
    per_page: int
    department: str | None = None


# --- Redemptions ---


class RedemptionView(BaseModel):
    id: str
    user_id: str
    reward_id: str
    reward_name: str
    points_spent: int
    status: str
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime
