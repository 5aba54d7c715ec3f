"""Tests for ProgressionService orchestration."""

import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from focus_rank.achievements import ACHIEVEMENTS, AchievementDef, Rarity
from focus_rank.db import Database
from focus_rank.errors import (
    ConcurrentUpdate,
    InsufficientCoins,
    InvalidSession,
    InvariantViolation,
    PowerUpNotFound,
    QuestNotActive,
    QuestNotFound,
    StorageUnavailable,
    Unauthenticated,
    UserNotFound,
)
from focus_rank.service import ProgressionService

UTC = timezone.utc
NOW = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)  # a Monday


def _stored_score(db: Database, user_id: str) -> int | None:
    row = db.conn.execute("SELECT score FROM leaderboard WHERE user_id = ?", (user_id,)).fetchone()
    return row["score"] if row else None


@pytest.fixture
def db(tmp_path):
    """Create a temporary database for testing."""
    database = Database(db_path=tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def service(db):
    return ProgressionService(db, clock=lambda: NOW)


@pytest.fixture
def user(service):
    return service.add_user("ada@example.com", "Ada")["id"]


def _set(db: Database, user_id: str, **changes) -> None:
    current = db.get_progression(user_id)
    db.update_progression(replace(current, **changes), current.version)


# ── Identity ──────────────────────────────────────────────────────────────────


class TestIdentity:
    def test_resolve_by_id_and_email(self, service, user):
        assert service.resolve_user_id(user) == user
        assert service.resolve_user_id("ada@example.com") == user
        assert service.resolve_user_id("  ada@example.com ") == user

    def test_empty_identifier_unauthenticated(self, service):
        with pytest.raises(Unauthenticated):
            service.resolve_user_id("")
        with pytest.raises(Unauthenticated):
            service.resolve_user_id(None)

    def test_unknown_identifier(self, service):
        with pytest.raises(UserNotFound):
            service.resolve_user_id("ghost@example.com")

    def test_add_user_requires_email(self, service):
        with pytest.raises(Unauthenticated):
            service.add_user("   ")

    def test_add_user_idempotent(self, service, user):
        assert service.add_user("ada@example.com")["id"] == user


# ── Initialization ────────────────────────────────────────────────────────────


class TestInitialize:
    def test_once(self, service, user):
        assert service.initialize(user) is True
        assert service.initialize(user) is False

    def test_unknown_user(self, service):
        with pytest.raises(UserNotFound):
            service.initialize("ghost")

    def test_concurrent_requests_single_baseline(self, tmp_path, db, user):
        results: list[bool] = []
        errors: list[Exception] = []
        barrier = threading.Barrier(3)

        def worker():
            database = Database(db_path=tmp_path / "test.db")
            try:
                barrier.wait()
                results.append(ProgressionService(database, clock=lambda: NOW).initialize(user))
            except Exception as exc:
                errors.append(exc)
            finally:
                database.close()

        threads = [threading.Thread(target=worker) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(results) == [False, False, True]
        assert db.get_progression(user).version == 0


# ── get_progression ───────────────────────────────────────────────────────────


class TestGetProgression:
    def test_unknown_user(self, service, db):
        with pytest.raises(UserNotFound):
            service.get_progression("ghost")
        assert db.get_progression("ghost") is None

    def test_initializes_on_first_read(self, service, db, user):
        response = service.get_progression(user)
        assert set(response) == {"quests", "powerUps", "stats", "achievements"}
        assert response["stats"] == {
            "level": 1,
            "xp": 0,
            "coins": 0,
            "totalFocusTime": 0,
            "weeklyStreak": 0,
            "achievements": 0,
            "leaderboardRank": 1,
        }
        assert db.get_progression(user) is not None
        assert _stored_score(db, user) == 100

    def test_read_persists_only_initialization(self, service, db, user):
        service.get_progression(user)
        service.get_progression(user)
        assert db.get_progression(user).version == 0
        assert db.get_quests(user) == {}
        assert db.get_achievements(user) == []

    def test_active_quests(self, service, user):
        ids = [q["id"] for q in service.get_progression(user)["quests"]]
        assert ids == [
            "daily-focus-2024-01-01",
            "daily-productivity-2024-01-01",
            "weekly-focus-2024-01-01",
            "weekly-team-2024-01-01",
        ]

    def test_expired_daily_quests_dropped_at_end_date(self, service, user):
        service.complete_session(user, 70, 30)
        response = service.get_progression(user, now=datetime(2024, 1, 2, tzinfo=UTC))
        ids = [q["id"] for q in response["quests"]]
        assert "daily-focus-2024-01-01" not in ids
        assert "daily-focus-2024-01-02" in ids
        weekly = next(q for q in response["quests"] if q["id"] == "weekly-focus-2024-01-01")
        assert weekly["requirement"]["current"] == 30

    def test_evaluated_achievements_reported_not_persisted(self, service, db, user):
        service.initialize(user)
        _set(db, user, sessions_completed=1)
        response = service.get_progression(user)
        assert [a["id"] for a in response["achievements"]] == ["first_focus"]
        assert response["achievements"][0]["unlockedAt"] == NOW.isoformat()
        assert response["stats"]["achievements"] == 1
        assert db.get_achievements(user) == []

    def test_documented_rank_scenario(self, service, db):
        minutes = {"a": 100, "b": 80, "c": 80, "d": 50, "e": 10}
        ids = {}
        for name, focus in minutes.items():
            ids[name] = service.add_user(f"{name}@example.com")["id"]
            service.initialize(ids[name])
            _set(db, ids[name], total_focus_time=focus)
        ranks = {name: service.get_progression(uid)["stats"]["leaderboardRank"] for name, uid in ids.items()}
        assert ranks == {"a": 1, "b": 2, "c": 2, "d": 4, "e": 5}


# ── complete_session ──────────────────────────────────────────────────────────


class TestCompleteSession:
    def test_perfect_hour(self, service, db, user):
        result = service.complete_session(user, 100, 60)
        assert result["rewards"]["xp"] == 750
        assert result["rewards"]["coins"] == 375
        # 750 session + 150 productivity quest + 750 perfectionist
        assert result["stats"] == {
            "level": 2,
            "xp": 1650,
            "coins": 450,
            "totalFocusTime": 60,
            "weeklyStreak": 1,
            "achievements": 2,
            "leaderboardRank": 1,
        }
        assert result["leveledUp"] is True
        assert [q["id"] for q in result["completedQuests"]] == ["daily-productivity-2024-01-01"]
        assert [a["id"] for a in result["newAchievements"]] == ["first_focus", "perfectionist"]

    def test_leaderboard_recomputed_in_same_write(self, service, db, user):
        service.complete_session(user, 100, 60)
        entry = db.get_leaderboard_entry(user)
        assert entry.badges == frozenset({"perfectionist"})
        assert entry.achievements == frozenset({"first_focus", "perfectionist"})
        # 10 + 0 + 200 + 165 + 50 + 50 + 15
        assert _stored_score(db, user) == entry.score == 490

    def test_quiet_session(self, service, db, user):
        result = service.complete_session(user, 50, 20, tasks_completed=2)
        assert result["rewards"]["xp"] == 100
        assert result["leveledUp"] is False
        assert result["completedQuests"] == []
        assert db.get_progression(user).tasks_completed == 2
        quests = db.get_quests(user)
        assert quests["daily-focus-2024-01-01"].current == 20
        assert quests["daily-productivity-2024-01-01"].current == 50

    def test_streak_across_days(self, service, user):
        service.complete_session(user, 50, 20)
        result = service.complete_session(user, 50, 20, now=NOW + timedelta(days=1))
        assert result["stats"]["weeklyStreak"] == 2
        assert result["rewards"]["streakBonus"] == pytest.approx(0.1)

    def test_infinite_duration_rejected(self, service, db, user):
        with pytest.raises(InvalidSession):
            service.complete_session(user, 80, float("inf"))
        assert db.get_progression(user).total_focus_time == 0

    def test_invalid_session_persists_nothing(self, service, db, user):
        with pytest.raises(InvalidSession):
            service.complete_session(user, 120, 30)
        progression = db.get_progression(user)
        assert progression.sessions_completed == 0
        assert progression.version == 0
        assert db.get_quests(user) == {}

    def test_lost_version_check_rolls_back(self, service, db, user):
        service.initialize(user)
        with patch.object(db, "update_progression", side_effect=ConcurrentUpdate(user, 0)):
            with pytest.raises(StorageUnavailable):
                service.complete_session(user, 100, 60)
        assert db.get_quests(user) == {}
        assert db.get_achievements(user) == []
        assert db.get_progression(user).experience == 0

    def test_unknown_user(self, service):
        with pytest.raises(UserNotFound):
            service.complete_session("ghost", 80, 25)

    def test_achievements_only_grow(self, service, db, user):
        seen: set[str] = set()
        for day in range(8):
            service.complete_session(user, 96, 90, team=True, now=NOW + timedelta(days=day))
            unlocked = {a.id for a in db.get_achievements(user)}
            assert seen <= unlocked
            seen = unlocked
        assert {"first_focus", "perfectionist", "deep_worker", "streak_warrior", "weekly_master"} <= seen

    def test_team_quest_completion_unlocks_badge(self, service, db, user):
        for hour in range(3):
            result = service.complete_session(user, 60, 20, team=True, now=NOW + timedelta(hours=hour))
        assert "weekly-team-2024-01-01" in [q["id"] for q in result["completedQuests"]]
        assert "team_player" in db.get_leaderboard_entry(user).badges

    def test_custom_catalog(self, db, user):
        catalog = [
            AchievementDef(
                id="double", name="Double", description="Two sessions", rarity=Rarity.COMMON,
                target=2, check_field="sessions_completed", xp_reward=10,
            )
        ]
        service = ProgressionService(db, catalog=catalog, clock=lambda: NOW)
        assert service.complete_session(user, 50, 20)["newAchievements"] == []
        result = service.complete_session(user, 50, 20, now=NOW + timedelta(hours=1))
        assert [a["id"] for a in result["newAchievements"]] == ["double"]


# ── Quests ────────────────────────────────────────────────────────────────────


class TestUpdateQuestProgress:
    def test_completes_and_rewards(self, service, user):
        result = service.update_quest_progress(user, "daily-focus-2024-01-01", 120)
        assert result["quest"]["status"] == "completed"
        assert result["stats"]["xp"] == 100
        assert result["stats"]["coins"] == 50
        assert [q["id"] for q in result["completedQuests"]] == ["daily-focus-2024-01-01"]

    def test_partial(self, service, user):
        result = service.update_quest_progress(user, "daily-focus-2024-01-01", 60)
        assert result["quest"]["status"] == "active"
        assert result["quest"]["requirement"]["current"] == 60
        assert result["stats"]["xp"] == 0

    def test_claimed_once(self, service, user):
        service.update_quest_progress(user, "daily-focus-2024-01-01", 120)
        with pytest.raises(QuestNotActive):
            service.update_quest_progress(user, "daily-focus-2024-01-01", 200)

    def test_reward_achievement(self, service, user):
        result = service.update_quest_progress(user, "weekly-focus-2024-01-01", 600)
        assert [a["id"] for a in result["newAchievements"]] == ["weekly_master"]
        assert result["stats"]["xp"] == 500
        assert result["stats"]["achievements"] == 1

    def test_unknown_quest(self, service, user):
        with pytest.raises(QuestNotFound):
            service.update_quest_progress(user, "daily-focus-1999-01-01", 10)

    def test_expired_quest(self, service, user):
        service.complete_session(user, 70, 30)
        with pytest.raises(QuestNotActive):
            service.update_quest_progress(
                user, "daily-focus-2024-01-01", 120, now=datetime(2024, 1, 2, 1, 0, tzinfo=UTC)
            )

    def test_negative_progress(self, service, user):
        with pytest.raises(InvalidSession):
            service.update_quest_progress(user, "daily-focus-2024-01-01", -1)

    @pytest.mark.parametrize("progress", [float("nan"), float("inf")])
    def test_non_finite_progress(self, service, db, user, progress):
        with pytest.raises(InvalidSession):
            service.update_quest_progress(user, "daily-focus-2024-01-01", progress)
        assert db.get_quests(user) == {}


# ── Power-ups ─────────────────────────────────────────────────────────────────


class TestPowerUps:
    def test_insufficient_coins(self, service, db, user):
        with pytest.raises(InsufficientCoins):
            service.purchase_power_up(user, "xp_boost_small")
        assert db.get_power_ups(user) == []
        assert db.get_progression(user).coins == 0

    def test_unknown_power_up(self, service, user):
        with pytest.raises(PowerUpNotFound):
            service.purchase_power_up(user, "time_warp")

    def test_buy_activate_and_boost(self, service, db, user):
        service.initialize(user)
        _set(db, user, coins=1000)
        bought = service.purchase_power_up(user, "xp_boost_small")
        assert bought["coins"] == 900
        assert bought["powerUp"]["status"] == "inventory"
        assert [p["status"] for p in service.get_progression(user)["powerUps"]] == ["inventory"]

        activated = service.activate_power_up(user, "xp_boost_small")
        assert activated["powerUp"]["status"] == "active"
        assert activated["powerUp"]["expiresAt"] == (NOW + timedelta(minutes=60)).isoformat()

        result = service.complete_session(user, 50, 20, now=NOW + timedelta(minutes=10))
        assert result["rewards"]["xp"] == 150
        assert result["rewards"]["coins"] == 50

    def test_expired_power_up_hidden_and_inert(self, service, db, user):
        service.initialize(user)
        _set(db, user, coins=1000)
        service.purchase_power_up(user, "all_boost")
        service.activate_power_up(user, "all_boost")
        later = NOW + timedelta(hours=2)
        assert service.get_progression(user, now=later)["powerUps"] == []
        assert service.complete_session(user, 50, 20, now=later)["rewards"]["xp"] == 100

    def test_activate_without_inventory(self, service, user):
        with pytest.raises(PowerUpNotFound):
            service.activate_power_up(user, "xp_boost_small")


# ── Read views ────────────────────────────────────────────────────────────────


class TestLeaderboard:
    def test_standings(self, service, user):
        bob = service.add_user("bob@example.com")["id"]
        carol = service.add_user("carol@example.com")["id"]
        service.complete_session(user, 100, 60)
        service.complete_session(bob, 50, 20)
        service.initialize(carol)

        result = service.leaderboard(user_id=bob, limit=2)
        assert [e["userId"] for e in result["entries"]] == [user, bob]
        assert [e["score"] for e in result["entries"]] == [490, 153]
        assert result["count"] == 3
        assert result["yourRank"] == 2
        assert [e["userId"] for e in result["nearby"]] == [user, bob, carol]
        assert result["focusRank"] == 2

    def test_focus_rank_matches_progression_rank(self, service, user):
        bob = service.add_user("bob@example.com")["id"]
        service.complete_session(bob, 50, 20)
        service.complete_session(user, 80, 30)
        result = service.leaderboard(user_id=user)
        assert result["focusRank"] == service.get_progression(user)["stats"]["leaderboardRank"] == 1

    def test_uninitialized_user_has_no_focus_rank(self, service, user):
        result = service.leaderboard(user_id=user)
        assert result["focusRank"] is None
        assert result["yourRank"] is None

    def test_without_user(self, service, user):
        service.initialize(user)
        result = service.leaderboard()
        assert "yourRank" not in result
        assert result["entries"][0]["rank"] == 1

    def test_zero_limit(self, service, user):
        service.initialize(user)
        assert service.leaderboard(limit=0)["entries"] == []


class TestAchievementsView:
    def test_fresh_user(self, service, user):
        result = service.achievements(user)
        assert result["totalCount"] == len(ACHIEVEMENTS)
        assert result["unlockedCount"] == 0

    def test_progress(self, service, user):
        service.complete_session(user, 100, 60)
        result = service.achievements(user)
        assert result["unlockedCount"] == 2
        deep = next(a for a in result["achievements"] if a["id"] == "deep_worker")
        assert deep["progressPct"] == 10
        assert deep["current"] == 60
        perfect = next(a for a in result["achievements"] if a["id"] == "perfectionist")
        assert perfect["unlocked"] is True
        assert perfect["unlockedAt"] == NOW.isoformat()


# ── Failures ──────────────────────────────────────────────────────────────────


class TestFailures:
    def test_storage_error_wrapped(self, service, db, user):
        with patch.object(db, "get_user", side_effect=sqlite3.OperationalError("database is locked")):
            with pytest.raises(StorageUnavailable) as exc_info:
                service.get_progression(user)
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

    def test_invariant_violation_logged(self, service, db, user, caplog):
        with patch.object(db, "count_users_with_focus_above", side_effect=InvariantViolation("bad count")):
            with caplog.at_level(logging.ERROR, logger="focus_rank.service"):
                with pytest.raises(InvariantViolation):
                    service.get_progression(user)
        assert "bad count" in caplog.text
