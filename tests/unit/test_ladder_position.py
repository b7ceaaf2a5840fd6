"""Ladder placement from earned points."""

from __future__ import annotations

import pytest

from gamify.db.models import LadderLevel
from gamify.ladder.service import compute_ladder_position

LADDER = [
    LadderLevel(id=1, level=1, label="Beginner", points_required=0),
    LadderLevel(id=2, level=2, label="Intermediate", points_required=100),
    LadderLevel(id=3, level=3, label="Advanced", points_required=300),
]


class TestComputeLadderPosition:
    def test_zero_points_is_first_level(self):
        position = compute_ladder_position(0, LADDER)
        assert position["current"].level == 1
        assert position["next"].level == 2
        assert position["points_to_next_level"] == 100

    def test_boundary_99(self):
        """99 points is still level 1."""
        position = compute_ladder_position(99, LADDER)
        assert position["current"].level == 1
        assert position["points_to_next_level"] == 1

    def test_exactly_on_threshold(self):
        position = compute_ladder_position(100, LADDER)
        assert position["current"].label == "Intermediate"
        assert position["points_to_next_level"] == 200

    def test_top_level_has_nothing_left(self):
        position = compute_ladder_position(5000, LADDER)
        assert position["current"].level == 3
        assert position["next"] is None
        assert position["points_to_next_level"] == 0

    def test_below_first_threshold_sits_on_lowest_level(self):
        ladder = [
            LadderLevel(id=7, level=1, label="Rookie", points_required=50),
            LadderLevel(id=8, level=2, label="Pro", points_required=150),
        ]
        position = compute_ladder_position(10, ladder)
        assert position["current"].label == "Rookie"
        assert position["points_to_next_level"] == 140

    @pytest.mark.parametrize(
        "points,expected_level",
        [(0, 1), (1, 1), (100, 2), (299, 2), (300, 3), (301, 3)],
    )
    def test_level_table(self, points, expected_level):
        assert compute_ladder_position(points, LADDER)["current"].level == expected_level

    def test_empty_ladder_rejected(self):
        with pytest.raises(ValueError):
            compute_ladder_position(10, [])
