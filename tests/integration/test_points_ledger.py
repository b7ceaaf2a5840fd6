"""Integration: awarding and spending points."""

from __future__ import annotations

import pytest

from gamify.errors import InsufficientPointsError, UserNotFoundError, ValidationError
from gamify.events.types import PointsEarnedEvent, PointsSpentEvent

pytestmark = pytest.mark.asyncio


class TestAwardPoints:
    async def test_award_raises_both_balances(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")

        total = await engine.award_points(user.id, 40, "BONUS", {"reason": "onboarding"})

        assert total == 40
        refreshed = await engine.get_user(user.id)
        assert refreshed.earned_points == 40
        assert refreshed.available_points == 40
        [txn] = await engine.get_transactions(user.id)
        assert txn.points == 40
        assert txn.event_type == "BONUS"
        assert txn.transaction_metadata == {"reason": "onboarding"}

    @pytest.mark.parametrize("awards", [[0], [5, 0, 7], [100, 250, 1]])
    async def test_award_properties(self, laddered_engine, awards):
        engine = laddered_engine
        user = await engine.create_user("alice")
        for amount in awards:
            before = await engine.get_user(user.id)
            await engine.award_points(user.id, amount, "BONUS")
            after = await engine.get_user(user.id)
            assert after.earned_points == before.earned_points + amount
            assert after.available_points == before.available_points + amount

    async def test_award_updates_ladder_in_same_transaction(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")

        await engine.award_points(user.id, 320, "BONUS")

        status = await engine.get_user_ladder_status(user.id)
        assert status.current_level == 3
        assert status.earned_points == 320

    async def test_award_publishes_points_earned(self, laddered_engine, sink):
        engine = laddered_engine
        received = []

        class Capture:
            interested_in = (PointsEarnedEvent,)

            async def handle(self, event):
                received.append(event)

        engine.bus.subscribe(Capture())
        user = await engine.create_user("alice")

        await engine.award_points(user.id, 25, "BONUS")

        assert [(e.points, e.new_total, e.source) for e in received] == [(25, 25, "BONUS")]
        assert sink.on("points") == [{
            "userId": user.id,
            "eventType": "POINTS_EARNED",
            "points": 25,
            "newBalance": 25,
            "source": "BONUS",
        }]

    async def test_negative_award_rejected(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        with pytest.raises(ValidationError):
            await engine.award_points(user.id, -5, "BONUS")
        assert await engine.get_transactions(user.id) == []

    async def test_unknown_user(self, laddered_engine):
        with pytest.raises(UserNotFoundError):
            await laddered_engine.award_points("nobody", 5, "BONUS")

    async def test_get_user_points(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 12, "BONUS")
        assert await engine.get_user_points(user.id) == 12


class TestSpendPoints:
    async def test_spend_leaves_earned_unchanged(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 100, "BONUS")

        balance = await engine.spend_points(user.id, 60, "SHOP")

        assert balance == 40
        refreshed = await engine.get_user(user.id)
        assert refreshed.earned_points == 100
        assert refreshed.available_points == 40
        spends = await engine.get_transactions(user.id, "SHOP")
        assert [t.points for t in spends] == [-60]

    async def test_spend_entire_balance(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 30, "BONUS")

        assert await engine.spend_points(user.id, 30, "SHOP") == 0

    async def test_overspend_rejected_without_change(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 30, "BONUS")

        with pytest.raises(InsufficientPointsError) as exc_info:
            await engine.spend_points(user.id, 31, "SHOP")

        assert exc_info.value.requested == 31
        assert exc_info.value.available == 30
        refreshed = await engine.get_user(user.id)
        assert refreshed.earned_points == 30
        assert refreshed.available_points == 30
        assert len(await engine.get_transactions(user.id)) == 1

    async def test_spend_publishes_points_spent(self, laddered_engine, sink):
        engine = laddered_engine
        received = []

        class Capture:
            interested_in = (PointsSpentEvent,)

            async def handle(self, event):
                received.append(event)

        engine.bus.subscribe(Capture())
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 50, "BONUS")

        await engine.spend_points(user.id, 20, "SHOP")

        assert [(e.points, e.new_balance) for e in received] == [(20, 30)]
        assert sink.on("points")[-1]["eventType"] == "POINTS_SPENT"
        assert sink.on("points")[-1]["newBalance"] == 30
