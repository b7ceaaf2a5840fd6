"""Gamification engine facade.

``GamificationEngine`` owns the event bus, the per-user locks and the
components that publish or subscribe, and exposes every operation to the
outer layers (API, scheduler, tests). Each operation runs in its own session;
domain events are published after the commit and outside the user's lock.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamify.achievements import service as achievements
from gamify.achievements.criteria import CriteriaEvaluator
from gamify.achievements.processor import AchievementProcessor
from gamify.config import Settings, get_settings
from gamify.database import create_tables, get_session_factory, init_db
from gamify.db.models import (
    Achievement,
    LadderLevel,
    PointsTransaction,
    Reward,
    RewardRedemption,
    TaskEvent,
    User,
)
from gamify.events.bus import EventBus
from gamify.events.subscribers import (
    LadderStatusSubscriber,
    NotificationSubscriber,
    PointsEventSubscriber,
    TaskCompletedEventSubscriber,
)
from gamify.events.types import PointsEarnedEvent, PointsSpentEvent, UserRef
from gamify.ladder import service as ladder
from gamify.leaderboard import service as leaderboard
from gamify.logging_setup import setup_logging
from gamify.notifications.sink import (
    NotificationSink,
    RedisNotificationSink,
    discard_deferred,
    send_deferred,
)
from gamify.pipeline.commands import TaskCommandFactory
from gamify.pipeline.service import TaskEventProcessor
from gamify.pipeline.strategies import PriorityPointsStrategy
from gamify.points import service as points
from gamify.points.locks import UserLocks
from gamify.redemptions import service as redemptions
from gamify.redemptions.observers import NotificationRedemptionObserver, PointsRefundObserver
from gamify.redemptions.states import RedemptionStateMachine
from gamify.schemas import (
    LadderStatusView,
    LeaderboardEntry,
    LeaderboardPage,
    RedemptionView,
    UserAchievementsView,
)
from gamify.seed import seed_achievements, seed_ladder_levels

logger = logging.getLogger(__name__)


class GamificationEngine:
    """Entry point for every engine operation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sink: NotificationSink,
        settings: Settings | None = None,
        *,
        wire_defaults: bool = True,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.sink = sink

        self.bus = EventBus()
        self.locks = UserLocks()
        self.evaluator = CriteriaEvaluator()
        self.commands = TaskCommandFactory(
            PriorityPointsStrategy(
                self.settings.task_priority_points,
                self.settings.task_default_points,
            )
        )
        self.tasks = TaskEventProcessor(session_factory, self.bus, self.locks, self.commands)
        self.achievement_processor = AchievementProcessor(
            session_factory, self.bus, self.locks, self.evaluator,
        )
        self.redemption_machine = RedemptionStateMachine([
            PointsRefundObserver(),
            NotificationRedemptionObserver(),
        ])

        if wire_defaults:
            self.wire_default_subscribers()

    def wire_default_subscribers(self) -> None:
        self.bus.subscribe(LadderStatusSubscriber(self.session_factory, self.locks))
        self.bus.subscribe(PointsEventSubscriber())
        self.bus.subscribe(TaskCompletedEventSubscriber())
        self.bus.subscribe(NotificationSubscriber(self.sink))
        self.bus.register(self.achievement_processor)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                dropped = discard_deferred(db)
                if dropped:
                    logger.info("Dropped %d notifications from a rolled-back transaction", dropped)
                raise
            await send_deferred(db, self.sink)

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as db:
            yield db

    # --- Users & seed ---

    async def create_user(
        self,
        username: str,
        department: str | None = None,
        role: str = "EMPLOYEE",
    ) -> User:
        async with self._transaction() as db:
            user = User(username=username, department=department, role=role)
            db.add(user)
            await db.flush()
        return user

    async def seed(self) -> dict[str, int]:
        async with self._transaction() as db:
            levels = await seed_ladder_levels(db)
            seeded = await seed_achievements(db)
        return {"ladder_levels": levels, "achievements": seeded}

    # --- Task events ---

    async def process_task_event(
        self,
        user_id: str,
        task_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> TaskEvent:
        return await self.tasks.process(user_id, task_id, event_type, payload)

    # --- Points ---

    async def award_points(
        self,
        user_id: str,
        amount: int,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Award points and refresh the ladder in one transaction. Returns the new earned total."""
        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                user = await points.get_user(db, user_id, for_update=True)
                await points.credit_points(db, user, amount, source, metadata)
                await ladder.update_user_ladder_status(db, user_id)
            event = PointsEarnedEvent(
                user=UserRef.from_user(user),
                points=amount,
                new_total=user.earned_points,
                source=source,
                metadata=dict(metadata or {}),
            )

        await self.bus.publish_event(event)
        return event.new_total

    async def spend_points(
        self,
        user_id: str,
        amount: int,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Spend available points. Returns the new available balance."""
        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                user = await points.get_user(db, user_id, for_update=True)
                await points.debit_points(db, user, amount, source, metadata)
            event = PointsSpentEvent(
                user=UserRef.from_user(user),
                points=amount,
                new_balance=user.available_points,
                source=source,
                metadata=dict(metadata or {}),
            )

        await self.bus.publish_event(event)
        return event.new_balance

    async def get_user(self, user_id: str) -> User:
        async with self._read() as db:
            return await points.get_user(db, user_id)

    async def get_user_points(self, user_id: str) -> int:
        async with self._read() as db:
            return await points.get_user_points(db, user_id)

    async def get_transactions(self, user_id: str, event_type: str | None = None) -> list[PointsTransaction]:
        async with self._read() as db:
            return await points.get_transactions(db, user_id, event_type)

    # --- Ladder ---

    async def get_user_ladder_status(self, user_id: str) -> LadderStatusView:
        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                return await ladder.get_user_ladder_status(db, user_id)

    async def update_user_ladder_status(self, user_id: str) -> LadderStatusView:
        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                return await ladder.update_user_ladder_status(db, user_id)

    async def list_levels(self) -> list[LadderLevel]:
        async with self._read() as db:
            return await ladder.list_levels(db)

    async def create_ladder_level(self, level: int, label: str, points_required: int) -> LadderLevel:
        async with self._transaction() as db:
            return await ladder.create_ladder_level(db, level, label, points_required)

    # --- Achievements ---

    async def create_achievement(self, name: str, description: str, criteria: dict[str, Any]) -> Achievement:
        async with self._transaction() as db:
            return await achievements.create_achievement(db, self.evaluator, name, description, criteria)

    async def get_achievement(self, achievement_id: str) -> Achievement:
        async with self._read() as db:
            return await achievements.get_achievement(db, achievement_id)

    async def get_achievement_by_name(self, name: str) -> Achievement | None:
        async with self._read() as db:
            return await achievements.get_achievement_by_name(db, name)

    async def list_achievements(self) -> list[Achievement]:
        async with self._read() as db:
            return await achievements.list_achievements(db)

    async def update_achievement(self, achievement_id: str, **changes: Any) -> Achievement:
        async with self._transaction() as db:
            return await achievements.update_achievement(db, self.evaluator, achievement_id, **changes)

    async def delete_achievement(self, achievement_id: str) -> None:
        async with self._transaction() as db:
            await achievements.delete_achievement(db, achievement_id)

    async def process_achievements(
        self,
        user_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> list[Achievement]:
        return await self.achievement_processor.run(user_id, event_type, payload)

    async def check_criteria(self, user_id: str, achievement_id: str) -> bool:
        async with self._read() as db:
            user = await points.get_user(db, user_id)
            achievement = await achievements.get_achievement(db, achievement_id)
            return await achievements.check_criteria(db, self.evaluator, user, achievement)

    async def get_user_achievements(self, user_id: str) -> UserAchievementsView:
        async with self._read() as db:
            return await achievements.get_user_achievements(db, user_id)

    # --- Leaderboard ---

    async def calculate_ranks(self) -> int:
        async with self._transaction() as db:
            return await leaderboard.calculate_ranks(db)

    async def get_top_users(self, limit: int = 10) -> list[LeaderboardEntry]:
        async with self._read() as db:
            return await leaderboard.get_top_users(db, limit)

    async def get_global_rankings(self, page: int = 1, per_page: int | None = None) -> LeaderboardPage:
        async with self._read() as db:
            return await leaderboard.get_global_rankings(
                db, page, per_page or self.settings.leaderboard_page_size,
            )

    async def get_department_rankings(
        self,
        department: str,
        page: int = 1,
        per_page: int | None = None,
    ) -> LeaderboardPage:
        async with self._read() as db:
            return await leaderboard.get_department_rankings(
                db, department, page, per_page or self.settings.leaderboard_page_size,
            )

    async def get_user_rank(self, user_id: str) -> LeaderboardEntry | None:
        async with self._read() as db:
            return await leaderboard.get_user_rank(db, user_id)

    # --- Rewards & redemptions ---

    async def create_reward(
        self,
        name: str,
        cost_in_points: int,
        description: str = "",
        available: bool = True,
    ) -> Reward:
        async with self._transaction() as db:
            return await redemptions.create_reward(db, name, cost_in_points, description, available)

    async def get_reward(self, reward_id: str) -> Reward:
        async with self._read() as db:
            return await redemptions.get_reward(db, reward_id)

    async def list_rewards(self, available_only: bool = False) -> list[Reward]:
        async with self._read() as db:
            return await redemptions.list_rewards(db, available_only)

    async def create_redemption(self, user_id: str, reward_id: str) -> RedemptionView:
        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                redemption = await redemptions.create_redemption(
                    db, self.redemption_machine, user_id, reward_id,
                )
            view = redemptions.to_view(redemption)
            event = PointsSpentEvent(
                user=UserRef.from_user(redemption.user),
                points=view.points_spent,
                new_balance=redemption.user.available_points,
                source=redemptions.REDEMPTION_EVENT_TYPE,
                metadata={"redemptionId": view.id, "rewardId": view.reward_id},
            )

        await self.bus.publish_event(event)
        return view

    async def get_redemption(self, redemption_id: str) -> RedemptionView:
        async with self._read() as db:
            return redemptions.to_view(await redemptions.get_redemption(db, redemption_id))

    async def process_redemption(self, redemption_id: str) -> RedemptionView:
        async with self._read() as db:
            redemption = await redemptions.get_redemption(db, redemption_id)
            self.redemption_machine.process(redemption)
            return redemptions.to_view(redemption)

    async def complete_redemption(self, redemption_id: str) -> RedemptionView:
        return await self._transition(redemption_id, self.redemption_machine.complete)

    async def fail_redemption(self, redemption_id: str, reason: str) -> RedemptionView:
        async def fail(db: AsyncSession, redemption: RewardRedemption) -> RewardRedemption:
            return await self.redemption_machine.fail(db, redemption, reason)

        return await self._transition(redemption_id, fail)

    async def cancel_redemption(self, redemption_id: str) -> RedemptionView:
        return await self._transition(redemption_id, self.redemption_machine.cancel)

    async def _transition(
        self,
        redemption_id: str,
        apply: Callable[[AsyncSession, RewardRedemption], Awaitable[RewardRedemption]],
    ) -> RedemptionView:
        async with self._read() as db:
            user_id = (await redemptions.get_redemption(db, redemption_id)).user_id

        async with self.locks.for_user(user_id):
            async with self._transaction() as db:
                redemption = await redemptions.get_redemption(db, redemption_id, for_update=True)
                await apply(db, redemption)
            view = redemptions.to_view(redemption)

        logger.info("Redemption %s is now %s", redemption_id, view.status)
        return view

    async def aclose(self) -> None:
        close = getattr(self.sink, "aclose", None)
        if close is not None:
            await close()


async def build_engine(settings: Settings | None = None, *, create_schema: bool = False) -> GamificationEngine:
    """Configure logging, the database and the Redis sink, then build the engine."""
    settings = settings or get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    if create_schema:
        await create_tables()
    sink = RedisNotificationSink.from_url(settings.redis_url, settings.notification_channel_prefix)
    logger.info("Gamification engine starting (%s)", settings.environment)
    return GamificationEngine(get_session_factory(), sink, settings)
