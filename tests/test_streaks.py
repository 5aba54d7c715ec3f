"""Tests for the streak transition."""

from datetime import datetime, timezone

from focus_rank.streaks import next_streak


def _at(day: int, hour: int = 12) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


class TestNextStreak:
    def test_first_session_starts_streak(self):
        assert next_streak(0, None, _at(1)) == 1

    def test_consecutive_day_extends(self):
        assert next_streak(3, _at(1, 22), _at(2, 8)) == 4

    def test_same_day_unchanged(self):
        assert next_streak(3, _at(2, 8), _at(2, 20)) == 3

    def test_same_day_minimum_one(self):
        assert next_streak(0, _at(2, 8), _at(2, 9)) == 1

    def test_gap_resets(self):
        assert next_streak(6, _at(1), _at(3)) == 1

    def test_last_active_in_future_counts_as_today(self):
        assert next_streak(4, _at(5), _at(4)) == 4
