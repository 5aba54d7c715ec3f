"""Tests for achievement evaluation and catalogs."""

from datetime import datetime, timezone

import pytest

from focus_rank.achievements import (
    ACHIEVEMENTS,
    CHECK_FIELDS,
    Achievement,
    achievement_progress,
    catalog_from_config,
    evaluate,
    find_definition,
    is_satisfied,
)
from focus_rank.errors import InvariantViolation
from focus_rank.progression import UserProgression, baseline

NOW = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def _ids(achievements: list[Achievement]) -> set[str]:
    return {a.id for a in achievements}


class TestCatalog:
    def test_ids_unique(self):
        ids = [a.id for a in ACHIEVEMENTS]
        assert len(ids) == len(set(ids))

    def test_check_fields_known(self):
        for definition in ACHIEVEMENTS:
            assert definition.check_field is None or definition.check_field in CHECK_FIELDS

    def test_check_fields_match_progression_stats(self):
        assert CHECK_FIELDS == set(baseline("u1").achievement_stats())

    def test_quest_reward_achievements_present(self):
        for achievement_id in ("streak_master", "weekly_master", "team_player"):
            assert find_definition(ACHIEVEMENTS, achievement_id) is not None


class TestProgress:
    def test_partial(self):
        stats = UserProgression(user_id="u1", total_focus_time=300).achievement_stats()
        assert achievement_progress(stats, find_definition(ACHIEVEMENTS, "deep_worker")) == 0.5

    def test_capped_at_one(self):
        stats = UserProgression(user_id="u1", total_focus_time=6000).achievement_stats()
        assert achievement_progress(stats, find_definition(ACHIEVEMENTS, "deep_worker")) == 1.0

    def test_quest_only_never_satisfied(self):
        stats = UserProgression(user_id="u1", sessions_completed=500).achievement_stats()
        assert is_satisfied(stats, find_definition(ACHIEVEMENTS, "streak_master")) is False


class TestEvaluate:
    def test_baseline_unlocks_nothing(self):
        assert evaluate(baseline("u1").achievement_stats(), ACHIEVEMENTS, set(), NOW) == []

    def test_first_session(self):
        stats = UserProgression(user_id="u1", sessions_completed=1).achievement_stats()
        unlocked = evaluate(stats, ACHIEVEMENTS, set(), NOW)
        assert _ids(unlocked) == {"first_focus"}
        assert unlocked[0].unlocked_at == NOW

    def test_already_unlocked_not_reemitted(self):
        stats = UserProgression(user_id="u1", sessions_completed=1).achievement_stats()
        assert evaluate(stats, ACHIEVEMENTS, {"first_focus"}, NOW) == []

    def test_repeatable(self):
        stats = UserProgression(user_id="u1", sessions_completed=1, best_session_score=97).achievement_stats()
        assert evaluate(stats, ACHIEVEMENTS, set(), NOW) == evaluate(stats, ACHIEVEMENTS, set(), NOW)

    def test_order_independent(self):
        stats = UserProgression(
            user_id="u1", sessions_completed=120, total_focus_time=4000, level=6, weekly_streak=8
        ).achievement_stats()
        forward = _ids(evaluate(stats, ACHIEVEMENTS, set(), NOW))
        backward = _ids(evaluate(stats, list(reversed(ACHIEVEMENTS)), set(), NOW))
        assert forward == backward
        assert {"first_focus", "deep_worker", "focus_master", "centurion", "rising_star", "streak_warrior"} <= forward

    def test_monotonic_with_growing_stats(self):
        unlocked: set[str] = set()
        for sessions, minutes in [(0, 0), (1, 25), (10, 700), (100, 3600), (150, 5000)]:
            stats = UserProgression(
                user_id="u1", sessions_completed=sessions, total_focus_time=minutes
            ).achievement_stats()
            before = set(unlocked)
            unlocked |= _ids(evaluate(stats, ACHIEVEMENTS, unlocked, NOW))
            assert before <= unlocked
        assert {"first_focus", "deep_worker", "focus_master", "centurion"} <= unlocked


class TestAchievementWire:
    def test_unlocked_at_absent_when_locked(self):
        data = Achievement("x", "X", "desc", unlocked_at=None).to_dict()
        assert "unlockedAt" not in data

    def test_unlocked_at_iso(self):
        data = Achievement("x", "X", "desc", unlocked_at=NOW, badge="x").to_dict()
        assert data["unlockedAt"] == "2024-01-01T08:00:00+00:00"
        assert data["badge"] == "x"


class TestCatalogFromConfig:
    def test_valid(self):
        catalog = catalog_from_config([
            {"id": "marathon", "name": "Marathon", "check_field": "total_focus_time", "target": 10000,
             "badge": "marathon", "xp_reward": 100, "rarity": "epic"},
        ])
        assert catalog[0].id == "marathon"
        assert catalog[0].target == 10000
        assert catalog[0].xp_reward == 100

    def test_unknown_field(self):
        with pytest.raises(InvariantViolation, match="unknown field"):
            catalog_from_config([{"id": "a", "name": "A", "check_field": "karma", "target": 1}])

    def test_duplicate_id(self):
        item = {"id": "a", "name": "A", "check_field": "level", "target": 2}
        with pytest.raises(InvariantViolation, match="Duplicate"):
            catalog_from_config([item, item])

    def test_missing_name(self):
        with pytest.raises(InvariantViolation):
            catalog_from_config([{"id": "a", "check_field": "level", "target": 2}])

    def test_non_positive_target(self):
        with pytest.raises(InvariantViolation):
            catalog_from_config([{"id": "a", "name": "A", "check_field": "level", "target": 0}])

    def test_bad_rarity(self):
        with pytest.raises(InvariantViolation):
            catalog_from_config([{"id": "a", "name": "A", "check_field": "level", "target": 2, "rarity": "mythic"}])
