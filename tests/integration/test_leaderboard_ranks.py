"""Integration: leaderboard rebuilds and projections."""

from __future__ import annotations

import pytest

from gamify.errors import UserNotFoundError
from gamify.workers.leaderboard_runner import refresh_rankings

pytestmark = pytest.mark.asyncio


async def _users_with_points(engine, rows):
    """rows: list of (username, department, points)."""
    users = {}
    for username, department, points in rows:
        user = await engine.create_user(username, department)
        if points:
            await engine.award_points(user.id, points, "BONUS")
        users[username] = user
    return users


class TestCalculateRanks:
    async def test_competition_ranking(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("ann", "Eng", 300), ("bob", "Eng", 300), ("cat", "Ops", 200)])

        assert await engine.calculate_ranks() == 3

        top = await engine.get_top_users(10)
        assert [(e.username, e.rank) for e in top] == [("ann", 1), ("bob", 1), ("cat", 3)]

    async def test_idempotent(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("ann", "Eng", 50), ("bob", "Ops", 70), ("cat", "Ops", 50)])

        await engine.calculate_ranks()
        first = [(e.user_id, e.rank) for e in await engine.get_top_users(10)]
        await engine.calculate_ranks()
        second = [(e.user_id, e.rank) for e in await engine.get_top_users(10)]

        assert first == second

    async def test_snapshot_is_stale_until_next_run(self, laddered_engine):
        engine = laddered_engine
        users = await _users_with_points(engine, [("ann", "Eng", 10), ("bob", "Eng", 20)])
        await engine.calculate_ranks()

        await engine.award_points(users["ann"].id, 100, "BONUS")
        assert (await engine.get_user_rank(users["ann"].id)).rank == 2

        await engine.calculate_ranks()
        entry = await engine.get_user_rank(users["ann"].id)
        assert entry.rank == 1
        assert entry.earned_points == 110
        assert entry.level == 2
        assert entry.level_label == "Intermediate"

    async def test_users_without_points_are_ranked(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("ann", "Eng", 0), ("bob", "Eng", 0)])

        assert await engine.calculate_ranks() == 2
        assert [e.rank for e in await engine.get_top_users()] == [1, 1]

    async def test_empty(self, engine):
        assert await engine.calculate_ranks() == 0
        assert await engine.get_top_users() == []


class TestProjections:
    async def test_top_users_limit(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("a", "X", 1), ("b", "X", 2), ("c", "X", 3)])
        await engine.calculate_ranks()

        top = await engine.get_top_users(2)
        assert [e.username for e in top] == ["c", "b"]

    async def test_global_pagination(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("a", "X", 1), ("b", "X", 2), ("c", "Y", 3)])
        await engine.calculate_ranks()

        page_one = await engine.get_global_rankings(page=1)
        page_two = await engine.get_global_rankings(page=2)

        assert page_one.total == 3
        assert page_one.per_page == 2
        assert [e.username for e in page_one.entries] == ["c", "b"]
        assert [e.username for e in page_two.entries] == ["a"]

    async def test_department_rankings_keep_global_rank(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(
            engine,
            [("ann", "Eng", 500), ("bob", "Ops", 400), ("cat", "Eng", 300), ("dan", "Eng", 100)],
        )
        await engine.calculate_ranks()

        page = await engine.get_department_rankings("Eng", page=1, per_page=2)
        assert page.department == "Eng"
        assert page.total == 3
        assert [(e.username, e.rank) for e in page.entries] == [("ann", 1), ("cat", 3)]

        rest = await engine.get_department_rankings("Eng", page=2, per_page=2)
        assert [(e.username, e.rank) for e in rest.entries] == [("dan", 4)]

    async def test_unknown_department_is_empty(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("ann", "Eng", 5)])
        await engine.calculate_ranks()

        page = await engine.get_department_rankings("Legal")
        assert page.total == 0
        assert page.entries == []

    async def test_user_rank_before_first_run(self, laddered_engine):
        engine = laddered_engine
        user = await engine.create_user("ann")
        assert await engine.get_user_rank(user.id) is None

    async def test_user_rank_unknown_user(self, engine):
        with pytest.raises(UserNotFoundError):
            await engine.get_user_rank("ghost")


class TestLeaderboardRunner:
    async def test_refresh_rankings(self, laddered_engine):
        engine = laddered_engine
        await _users_with_points(engine, [("ann", "Eng", 5), ("bob", "Eng", 7)])

        assert await refresh_rankings(engine) == 2
        assert [e.username for e in await engine.get_top_users()] == ["bob", "ann"]

    async def test_refresh_failure_is_logged_not_raised(self, laddered_engine, monkeypatch):
        engine = laddered_engine

        async def broken():
            raise RuntimeError("db down")

        monkeypatch.setattr(engine, "calculate_ranks", broken)

        assert await refresh_rankings(engine) is None
