"""Progression orchestration for focus-rank.

ProgressionService threads one explicitly passed Database through every
operation. Reads (get_progression, leaderboard, achievements) persist nothing
beyond the idempotent initialization of a user's progression. Mutations run
in a single transaction under the progression version check, so a failure
leaves no partial state behind.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from focus_rank.achievements import (
    ACHIEVEMENTS,
    Achievement,
    AchievementDef,
    achievement_progress,
    evaluate,
    find_definition,
    unlock,
)
from focus_rank.db import Database
from focus_rank.errors import (
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
from focus_rank.leaderboard import (
    LeaderboardEntry,
    build_entry,
    nearby,
    rank_entries,
    rank_from_count,
)
from focus_rank.powerups import active_multipliers, activation_window, get_power_up, visible_power_ups
from focus_rank.progression import (
    UserProgression,
    apply_session,
    baseline,
    grant,
    spend_coins,
    to_wire_stats,
)
from focus_rank.quests import (
    Quest,
    QuestStatus,
    advance,
    as_utc,
    filter_active,
    generate_daily,
    generate_weekly,
    merge_stored,
    set_progress,
)

logger = logging.getLogger(__name__)

NEARBY_RADIUS = 3


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@contextmanager
def _guard(action: str) -> Iterator[None]:
    """Translate storage failures and log invariant violations for one request."""
    try:
        yield
    except sqlite3.Error as exc:
        logger.exception("Storage failure while %s", action)
        raise StorageUnavailable(f"Storage failure while {action}: {exc}") from exc
    except InvariantViolation as exc:
        logger.error("Invariant violation while %s: %s", action, exc.message)
        raise


@dataclass
class _Ledger:
    """Running state of one mutation: the progression plus what it earned."""

    progression: UserProgression
    unlocked: dict[str, Achievement]
    leveled_up: bool = False
    new_achievements: list[Achievement] = field(default_factory=list)
    completed_quests: list[Quest] = field(default_factory=list)

    def grant(self, xp: int = 0, coins: int = 0) -> None:
        self.progression, leveled_up = grant(self.progression, xp=xp, coins=coins)
        self.leveled_up = self.leveled_up or leveled_up


class ProgressionService:
    """Load-or-initialize, derive, filter, rank and assemble a user's progression."""

    def __init__(
        self,
        db: Database,
        catalog: Iterable[AchievementDef] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.catalog = list(catalog) if catalog is not None else list(ACHIEVEMENTS)
        self.clock = clock

    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now if now is not None else self.clock())

    # ── Identity ─────────────────────────────────────────────────────────────

    def add_user(self, email: str, name: str = "") -> dict:
        """Register a user (idempotent per email)."""
        email = (email or "").strip()
        if not email:
            raise Unauthenticated("An email is required to register a user")
        with _guard("registering a user"):
            user = self.db.add_user(email, name)
        logger.info("Registered user %s", user["id"])
        return user

    def resolve_user_id(self, identifier: str | None) -> str:
        """Map a user id or email to the stable user id."""
        identifier = (identifier or "").strip()
        if not identifier:
            raise Unauthenticated("No user identifier supplied")
        with _guard("resolving a user"):
            user = self.db.get_user(identifier) or self.db.find_user_by_email(identifier)
        if user is None:
            raise UserNotFound(identifier)
        return user["id"]

    def _require_user(self, user_id: str) -> None:
        if self.db.get_user(user_id) is None:
            raise UserNotFound(user_id)

    # ── Initialization ───────────────────────────────────────────────────────

    def initialize(self, user_id: str) -> bool:
        """Create the baseline progression for a user unless one exists.

        Returns True if this call created it. Safe to call concurrently.
        """
        with _guard(f"initializing {user_id}"):
            self._require_user(user_id)
            created = self.db.initialize_progression(baseline(user_id))
        if created:
            logger.info("Initialized progression for %s", user_id)
        return created

    def _load_or_initialize(self, user_id: str) -> UserProgression:
        progression = self.db.get_progression(user_id)
        if progression is None:
            if self.db.initialize_progression(baseline(user_id)):
                logger.info("Initialized progression for %s", user_id)
            progression = self.db.get_progression(user_id)
        return progression

    # ── Derivation helpers ───────────────────────────────────────────────────

    def _known_quests(self, progression: UserProgression, now: datetime) -> list[Quest]:
        generated = generate_daily(progression, now) + generate_weekly(progression, now)
        return merge_stored(generated, self.db.get_quests(progression.user_id))

    def _active_quests(self, progression: UserProgression, now: datetime) -> list[Quest]:
        return filter_active(self._known_quests(progression, now), now)

    def _rank(self, progression: UserProgression) -> int:
        return rank_from_count(self.db.count_users_with_focus_above(progression.total_focus_time))

    def _entry(self, progression: UserProgression, achievements: Iterable[Achievement]) -> LeaderboardEntry:
        achievements = list(achievements)
        return build_entry(
            progression,
            badges=(a.badge for a in achievements if a.badge),
            achievements=(a.id for a in achievements),
        )

    def _record_unlock(self, ledger: _Ledger, definition: AchievementDef, now: datetime) -> None:
        achievement = unlock(definition, now)
        if not self.db.unlock_achievement(ledger.progression.user_id, achievement):
            ledger.unlocked.setdefault(achievement.id, achievement)
            return
        ledger.unlocked[achievement.id] = achievement
        ledger.new_achievements.append(achievement)
        logger.info("User %s unlocked achievement %s", ledger.progression.user_id, achievement.id)
        if definition.xp_reward:
            ledger.grant(xp=definition.xp_reward)

    def _settle_achievements(self, ledger: _Ledger, now: datetime) -> None:
        # Achievement XP can raise the level, which can satisfy further criteria.
        while True:
            fresh = evaluate(ledger.progression.achievement_stats(), self.catalog, set(ledger.unlocked), now)
            if not fresh:
                return
            for achievement in fresh:
                self._record_unlock(ledger, find_definition(self.catalog, achievement.id), now)

    def _claim_quest(self, ledger: _Ledger, quest: Quest, now: datetime) -> None:
        ledger.completed_quests.append(quest)
        ledger.grant(xp=quest.reward.xp, coins=quest.reward.coins)
        logger.info("User %s completed quest %s", ledger.progression.user_id, quest.id)
        achievement_id = quest.reward.achievement
        if achievement_id and achievement_id not in ledger.unlocked:
            definition = find_definition(self.catalog, achievement_id)
            if definition is None:
                logger.warning("Quest %s rewards unknown achievement %s", quest.id, achievement_id)
            else:
                self._record_unlock(ledger, definition, now)

    def _commit(self, ledger: _Ledger, expected_version: int) -> UserProgression:
        progression = self.db.update_progression(ledger.progression, expected_version)
        self.db.save_leaderboard_entry(self._entry(progression, ledger.unlocked.values()))
        return progression

    def _mutation_result(self, ledger: _Ledger, progression: UserProgression) -> dict:
        return {
            "leveledUp": ledger.leveled_up,
            "stats": to_wire_stats(progression, len(ledger.unlocked), self._rank(progression)),
            "completedQuests": [q.to_dict() for q in ledger.completed_quests],
            "newAchievements": [a.to_dict() for a in ledger.new_achievements],
        }

    # ── Read ─────────────────────────────────────────────────────────────────

    def get_progression(self, user_id: str, now: datetime | None = None) -> dict:
        """Assemble the progression response for one user.

        Newly satisfied achievements are reported with unlockedAt = now but are
        only persisted by a mutation (complete_session, update_quest_progress).
        """
        now = self._now(now)
        with _guard(f"loading progression for {user_id}"):
            self._require_user(user_id)
            progression = self._load_or_initialize(user_id)
            quests = self._active_quests(progression, now)
            unlocked = self.db.get_achievements(user_id)
            fresh = evaluate(progression.achievement_stats(), self.catalog, {a.id for a in unlocked}, now)
            owned = self.db.get_power_ups(user_id)
            rank = self._rank(progression)
        achievements = unlocked + fresh
        return {
            "quests": [q.to_dict() for q in quests],
            "powerUps": [p.to_dict() for p in visible_power_ups(owned, now)],
            "stats": to_wire_stats(progression, len(achievements), rank),
            "achievements": [a.to_dict() for a in achievements],
        }

    def achievements(self, user_id: str) -> dict:
        """Catalog view with unlock state and progress for one user."""
        with _guard(f"loading achievements for {user_id}"):
            self._require_user(user_id)
            progression = self._load_or_initialize(user_id)
            unlocked = {a.id: a for a in self.db.get_achievements(user_id)}
        stats = progression.achievement_stats()
        result = []
        for definition in self.catalog:
            achievement = unlocked.get(definition.id)
            progress = 1.0 if achievement else achievement_progress(stats, definition)
            result.append({
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "rarity": definition.rarity.value,
                "badge": definition.badge,
                "progress": progress,
                "progressPct": int(progress * 100),
                "current": stats.get(definition.check_field, 0) if definition.check_field else 0,
                "target": definition.target,
                "unlocked": achievement is not None,
                "unlockedAt": achievement.unlocked_at.isoformat() if achievement else None,
            })
        return {
            "achievements": result,
            "unlockedCount": sum(1 for a in result if a["unlocked"]),
            "totalCount": len(result),
        }

    def leaderboard(self, user_id: str | None = None, limit: int = 10) -> dict:
        """Standings by leaderboard score: the top entries plus the caller's neighbourhood."""
        with _guard("loading the leaderboard"):
            standings = rank_entries(self.db.get_all_leaderboard_entries())
            progression = self.db.get_progression(user_id) if user_id is not None else None
            focus_rank = self._rank(progression) if progression is not None else None
        result: dict = {
            "entries": [s.to_dict() for s in standings[: max(limit, 0)]],
            "count": len(standings),
        }
        if user_id is not None:
            mine = next((s for s in standings if s.entry.user_id == user_id), None)
            result["yourRank"] = mine.rank if mine else None
            result["nearby"] = [s.to_dict() for s in nearby(standings, user_id, NEARBY_RADIUS)]
            result["focusRank"] = focus_rank
        return result

    # ── Mutations ────────────────────────────────────────────────────────────

    def complete_session(
        self,
        user_id: str,
        focus_score: float,
        minutes: int,
        team: bool = False,
        tasks_completed: int = 0,
        now: datetime | None = None,
    ) -> dict:
        """Fold one finished focus session into the user's progression.

        Rewards, quest progress, achievement unlocks and the leaderboard entry
        are all written in one transaction.
        """
        now = self._now(now)
        with _guard(f"completing a session for {user_id}"):
            self._require_user(user_id)
            self._load_or_initialize(user_id)
            with self.db.transaction():
                current = self.db.get_progression(user_id)
                xp_mult, coin_mult = active_multipliers(self.db.get_power_ups(user_id), now)
                outcome = apply_session(
                    current,
                    focus_score,
                    minutes,
                    now,
                    team=team,
                    tasks_completed=tasks_completed,
                    xp_multiplier=xp_mult,
                    coin_multiplier=coin_mult,
                )
                ledger = _Ledger(
                    progression=outcome.progression,
                    unlocked={a.id: a for a in self.db.get_achievements(user_id)},
                    leveled_up=outcome.leveled_up,
                )
                for quest in self._active_quests(current, now):
                    progressed = advance(quest, minutes, focus_score, team, now)
                    if progressed == quest:
                        continue
                    self.db.save_quest(user_id, progressed)
                    if progressed.status is QuestStatus.COMPLETED:
                        self._claim_quest(ledger, progressed, now)
                self._settle_achievements(ledger, now)
                progression = self._commit(ledger, current.version)
            result = self._mutation_result(ledger, progression)
        result["rewards"] = {
            "xp": outcome.rewards.xp,
            "coins": outcome.rewards.coins,
            "streakBonus": outcome.rewards.streak_bonus,
            "breakdown": outcome.rewards.breakdown,
        }
        return result

    def update_quest_progress(
        self, user_id: str, quest_id: str, progress: float, now: datetime | None = None
    ) -> dict:
        """Set the progress of an active quest; reaching its target claims it once."""
        if not math.isfinite(progress) or progress < 0:
            raise InvalidSession(f"Quest progress must be a finite non-negative number, got {progress}")
        now = self._now(now)
        with _guard(f"updating quest {quest_id} for {user_id}"):
            self._require_user(user_id)
            self._load_or_initialize(user_id)
            with self.db.transaction():
                current = self.db.get_progression(user_id)
                quest = next((q for q in self._known_quests(current, now) if q.id == quest_id), None)
                if quest is None:
                    raise QuestNotFound(quest_id)
                if not quest.is_claimable(now):
                    raise QuestNotActive(quest_id)
                updated = set_progress(quest, progress, now)
                self.db.save_quest(user_id, updated)
                ledger = _Ledger(
                    progression=current,
                    unlocked={a.id: a for a in self.db.get_achievements(user_id)},
                )
                if updated.status is QuestStatus.COMPLETED:
                    self._claim_quest(ledger, updated, now)
                    self._settle_achievements(ledger, now)
                progression = self._commit(ledger, current.version)
            result = self._mutation_result(ledger, progression)
        result["quest"] = updated.to_dict()
        return result

    def purchase_power_up(self, user_id: str, power_up_id: str, now: datetime | None = None) -> dict:
        """Buy a power-up into the inventory, paying its cost in coins."""
        definition = get_power_up(power_up_id)
        now = self._now(now)
        with _guard(f"purchasing {power_up_id} for {user_id}"):
            self._require_user(user_id)
            self._load_or_initialize(user_id)
            with self.db.transaction():
                current = self.db.get_progression(user_id)
                if current.coins < definition.cost:
                    raise InsufficientCoins(definition.cost, current.coins)
                progression = self.db.update_progression(
                    spend_coins(current, definition.cost), current.version
                )
                item = self.db.add_power_up(user_id, power_up_id, now)
        logger.info("User %s bought %s for %d coins", user_id, power_up_id, definition.cost)
        return {"powerUp": item.to_dict(), "coins": progression.coins}

    def activate_power_up(self, user_id: str, power_up_id: str, now: datetime | None = None) -> dict:
        """Activate the oldest inventory copy of a power-up for its duration."""
        activated_at, expires_at = activation_window(power_up_id, self._now(now))
        with _guard(f"activating {power_up_id} for {user_id}"):
            self._require_user(user_id)
            item = self.db.activate_power_up(user_id, power_up_id, activated_at, expires_at)
        if item is None:
            raise PowerUpNotFound(f"No {power_up_id} in inventory")
        logger.info("User %s activated %s until %s", user_id, power_up_id, expires_at.isoformat())
        return {"powerUp": item.to_dict()}
