"""Integration: ladder status, ladder administration and seed data."""

from __future__ import annotations

import pytest

from gamify.errors import UserNotFoundError, ValidationError
from gamify.seed import ACHIEVEMENT_SEED_DATA, LADDER_SEED_DATA

pytestmark = pytest.mark.asyncio


class TestLadderStatus:
    async def test_empty_ladder_gets_default_level(self, engine):
        user = await engine.create_user("alice")

        status = await engine.update_user_ladder_status(user.id)

        assert status.current_level == 1
        assert status.level_label == "Beginner"
        assert status.points_to_next_level == 0
        assert status.next_level is None
        levels = await engine.list_levels()
        assert [(lvl.level, lvl.points_required) for lvl in levels] == [(1, 0)]

    async def test_status_computed_on_first_read(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")

        status = await engine.get_user_ladder_status(user.id)

        assert status.current_level == 1
        assert status.next_level == 2
        assert status.points_to_next_level == 100

    async def test_top_level(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("alice")
        await engine.award_points(user.id, 1500, "BONUS")

        status = await engine.get_user_ladder_status(user.id)

        assert status.current_level == 5
        assert status.level_label == "Master"
        assert status.points_to_next_level == 0
        assert status.next_level is None

    async def test_unknown_user(self, laddered_engine):
        with pytest.raises(UserNotFoundError):
            await laddered_engine.update_user_ladder_status("ghost")
        with pytest.raises(UserNotFoundError):
            await laddered_engine.get_user_ladder_status("ghost")


class TestLadderAdministration:
    async def test_add_level(self, laddered_engine):
        engine = laddered_engine
        level = await engine.create_ladder_level(6, "Legend", 2000)
        assert level.label == "Legend"
        assert (await engine.list_levels())[-1].level == 6

    @pytest.mark.parametrize(
        "level,points",
        [
            (3, 450),     # level number taken
            (6, 1000),    # threshold taken
            (6, 50),      # higher level, lower threshold
            (0, 2000),    # lower level, higher threshold
            (7, -1),
        ],
    )
    async def test_rejects_inconsistent_levels(self, laddered_engine, level, points):
        with pytest.raises(ValidationError):
            await laddered_engine.create_ladder_level(level, "Odd", points)
        assert len(await laddered_engine.list_levels()) == len(LADDER_SEED_DATA)


class TestSeed:
    async def test_seed_is_idempotent(self, engine):
        first = await engine.seed()
        second = await engine.seed()

        assert first == {"ladder_levels": len(LADDER_SEED_DATA), "achievements": len(ACHIEVEMENT_SEED_DATA)}
        assert second == {"ladder_levels": 0, "achievements": 0}
        assert len(await engine.list_achievements()) == len(ACHIEVEMENT_SEED_DATA)

    async def test_seeded_criteria_are_valid(self, engine):
        for data in ACHIEVEMENT_SEED_DATA:
            engine.evaluator.validate(data["criteria"])
