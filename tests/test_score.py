"""Tests for the leaderboard score formula."""

import pytest

from focus_rank.errors import InvariantViolation
from focus_rank.leaderboard import LeaderboardEntry
from focus_rank.score import round_half_up, score, weighted_score


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_half_up(1.49) == 1

    def test_integer_unchanged(self):
        assert round_half_up(340.0) == 340


class TestWeightedScore:
    def test_all_zero(self):
        assert weighted_score(0, 0, 0, 0, 0, 0, 0) == 0

    def test_experience_half_point_rounds_up(self):
        # 5 XP * 0.1 = 0.5
        assert weighted_score(0, 0, 0, 5, 0, 0, 0) == 1

    def test_each_weight(self):
        assert weighted_score(1, 0, 0, 0, 0, 0, 0) == 10
        assert weighted_score(0, 1, 0, 0, 0, 0, 0) == 5
        assert weighted_score(0, 0, 1, 0, 0, 0, 0) == 100
        assert weighted_score(0, 0, 0, 10, 0, 0, 0) == 1
        assert weighted_score(0, 0, 0, 0, 1, 0, 0) == 50
        assert weighted_score(0, 0, 0, 0, 0, 1, 0) == 25
        assert weighted_score(0, 0, 0, 0, 0, 0, 1) == 15

    def test_negative_input_rejected(self):
        with pytest.raises(InvariantViolation, match="tasks_completed"):
            weighted_score(1, -1, 1, 0, 0, 0, 0)

    def test_all_negative_fields_named(self):
        with pytest.raises(InvariantViolation) as exc_info:
            weighted_score(-1, 0, 1, -5, 0, 0, 0)
        assert "focus_hours" in exc_info.value.message
        assert "experience" in exc_info.value.message


class TestScore:
    def test_documented_scenario(self):
        entry = LeaderboardEntry(
            user_id="u1",
            focus_hours=10,
            tasks_completed=4,
            level=2,
            experience=50,
            weekly_streak=1,
        )
        # round(100 + 20 + 200 + 5 + 0 + 0 + 15)
        assert score(entry) == 340

    def test_badges_and_achievements_counted(self):
        entry = LeaderboardEntry(
            user_id="u1",
            level=1,
            badges=frozenset({"focus_master", "perfectionist"}),
            achievements=frozenset({"first_focus"}),
        )
        assert score(entry) == 100 + 2 * 50 + 25

    def test_deterministic(self):
        entry = LeaderboardEntry(user_id="u1", focus_hours=3.25, tasks_completed=7, level=3, experience=3333)
        assert score(entry) == score(entry)

    def test_changes_with_contributing_field(self):
        entry = LeaderboardEntry(user_id="u1", focus_hours=1, level=1)
        busier = LeaderboardEntry(user_id="u1", focus_hours=1, level=1, tasks_completed=2)
        assert score(busier) == score(entry) + 10
