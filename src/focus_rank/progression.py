"""Per-user progression state and the pure transitions applied to it.

A UserProgression is created exactly once per user (see Database.initialize_progression)
and afterwards only replaced wholesale by the transitions below, under a
version check.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime

from focus_rank.errors import InvalidSession, InvariantViolation
from focus_rank.levels import level_from_xp
from focus_rank.score import round_half_up
from focus_rank.streaks import next_streak
from focus_rank.xp import SessionRewards, calculate_session_rewards

logger = logging.getLogger(__name__)

PROGRESSION_SCHEMA_VERSION = 1

_COUNTER_FIELDS = (
    "experience",
    "coins",
    "total_focus_time",
    "weekly_streak",
    "sessions_completed",
    "tasks_completed",
    "team_sessions",
    "version",
)


@dataclass(frozen=True)
class UserProgression:
    user_id: str
    level: int = 1
    experience: int = 0
    coins: int = 0
    total_focus_time: int = 0  # minutes
    weekly_streak: int = 0
    average_session_score: float = 0.0
    sessions_completed: int = 0
    tasks_completed: int = 0
    team_sessions: int = 0
    best_session_score: float = 0.0
    last_active: datetime | None = None
    version: int = 0
    schema_version: int = PROGRESSION_SCHEMA_VERSION

    def __post_init__(self) -> None:
        if self.schema_version != PROGRESSION_SCHEMA_VERSION:
            raise InvariantViolation(
                f"Unsupported progression schema version {self.schema_version} for {self.user_id}"
            )
        negative = [name for name in _COUNTER_FIELDS if getattr(self, name) < 0]
        if negative:
            raise InvariantViolation(
                f"Negative progression counters for {self.user_id}: {', '.join(negative)}"
            )
        if self.level < 1:
            raise InvariantViolation(f"Level below 1 for {self.user_id}: {self.level}")
        for name in ("average_session_score", "best_session_score"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise InvariantViolation(f"{name} out of range for {self.user_id}: {value}")

    @property
    def focus_hours(self) -> float:
        return self.total_focus_time / 60

    def achievement_stats(self) -> dict[str, float]:
        """Values achievement criteria can be checked against (keyed by check_field)."""
        return {
            "level": self.level,
            "experience": self.experience,
            "coins": self.coins,
            "total_focus_time": self.total_focus_time,
            "weekly_streak": self.weekly_streak,
            "average_session_score": self.average_session_score,
            "best_session_score": self.best_session_score,
            "sessions_completed": self.sessions_completed,
            "tasks_completed": self.tasks_completed,
            "team_sessions": self.team_sessions,
        }


def baseline(user_id: str) -> UserProgression:
    """The initial state every user starts from."""
    return UserProgression(user_id=user_id)


def grant(progression: UserProgression, xp: int = 0, coins: int = 0) -> tuple[UserProgression, bool]:
    """Add XP and coins, recompute level. Returns (new_state, leveled_up)."""
    if xp < 0 or coins < 0:
        raise InvariantViolation(f"Negative grant for {progression.user_id}: xp={xp} coins={coins}")
    experience = progression.experience + xp
    level = max(level_from_xp(experience), progression.level)
    updated = replace(
        progression,
        experience=experience,
        coins=progression.coins + coins,
        level=level,
    )
    leveled_up = level > progression.level
    if leveled_up:
        logger.info("User %s reached level %d", progression.user_id, level)
    return updated, leveled_up


def spend_coins(progression: UserProgression, amount: int) -> UserProgression:
    """Deduct coins. The caller checks the balance first."""
    return replace(progression, coins=progression.coins - amount)


@dataclass
class SessionOutcome:
    progression: UserProgression
    rewards: SessionRewards
    leveled_up: bool


def apply_session(
    progression: UserProgression,
    focus_score: float,
    minutes: int,
    now: datetime,
    team: bool = False,
    tasks_completed: int = 0,
    xp_multiplier: float = 1.0,
    coin_multiplier: float = 1.0,
) -> SessionOutcome:
    """Fold one completed focus session into the progression.

    Rewards use the streak as it stood before this session.
    """
    if not math.isfinite(focus_score) or not 0 <= focus_score <= 100:
        raise InvalidSession(f"Focus score must be within [0, 100], got {focus_score}")
    if not (math.isfinite(minutes) and math.isfinite(tasks_completed)) or minutes < 0 or tasks_completed < 0:
        raise InvalidSession(
            f"Duration and tasks must be non-negative, got minutes={minutes} tasks={tasks_completed}"
        )

    rewards = calculate_session_rewards(
        focus_score,
        minutes,
        weekly_streak=progression.weekly_streak,
        xp_multiplier=xp_multiplier,
        coin_multiplier=coin_multiplier,
    )
    sessions = progression.sessions_completed
    average = round_half_up((progression.average_session_score * sessions + focus_score) / (sessions + 1))

    updated = replace(
        progression,
        total_focus_time=progression.total_focus_time + minutes,
        average_session_score=float(average),
        best_session_score=max(progression.best_session_score, float(focus_score)),
        sessions_completed=sessions + 1,
        tasks_completed=progression.tasks_completed + tasks_completed,
        team_sessions=progression.team_sessions + (1 if team else 0),
        weekly_streak=next_streak(progression.weekly_streak, progression.last_active, now),
        last_active=now,
    )
    updated, leveled_up = grant(updated, xp=rewards.xp, coins=rewards.coins)
    return SessionOutcome(progression=updated, rewards=rewards, leveled_up=leveled_up)


def to_wire_stats(progression: UserProgression, achievements_count: int, rank: int) -> dict:
    """The `stats` block of the progression response."""
    return {
        "level": progression.level,
        "xp": progression.experience,
        "coins": progression.coins,
        "totalFocusTime": progression.total_focus_time,
        "weeklyStreak": progression.weekly_streak,
        "achievements": achievements_count,
        "leaderboardRank": rank,
    }
