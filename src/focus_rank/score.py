"""Leaderboard score formula. Pure function, no side effects.

The coefficients are a compatibility contract: changing them changes
user-visible rankings, so bump SCORE_FORMULA_VERSION alongside any change.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING

from focus_rank.errors import InvariantViolation

if TYPE_CHECKING:
    from focus_rank.leaderboard import LeaderboardEntry

SCORE_FORMULA_VERSION = 1

FOCUS_HOUR_WEIGHT = 10
TASK_WEIGHT = 5
LEVEL_WEIGHT = 100
EXPERIENCE_WEIGHT = 0.1
BADGE_WEIGHT = 50
ACHIEVEMENT_WEIGHT = 25
STREAK_WEIGHT = 15


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (2.5 -> 3, not 2)."""
    return math.floor(value + 0.5)


def weighted_score(
    focus_hours: float,
    tasks_completed: int,
    level: int,
    experience: int,
    badges_count: int,
    achievements_count: int,
    weekly_streak: int,
) -> int:
    """Weighted sum of the leaderboard fields, rounded half-up.

    Raises InvariantViolation on any negative input.
    """
    inputs = {
        "focus_hours": focus_hours,
        "tasks_completed": tasks_completed,
        "level": level,
        "experience": experience,
        "badges": badges_count,
        "achievements": achievements_count,
        "weekly_streak": weekly_streak,
    }
    negative = sorted(name for name, value in inputs.items() if value < 0)
    if negative:
        raise InvariantViolation(f"Negative score inputs: {', '.join(negative)}")
    return round_half_up(
        focus_hours * FOCUS_HOUR_WEIGHT
        + tasks_completed * TASK_WEIGHT
        + level * LEVEL_WEIGHT
        + experience * EXPERIENCE_WEIGHT
        + badges_count * BADGE_WEIGHT
        + achievements_count * ACHIEVEMENT_WEIGHT
        + weekly_streak * STREAK_WEIGHT
    )


def score(entry: LeaderboardEntry) -> int:
    """Score a leaderboard entry from its own fields."""
    return weighted_score(
        focus_hours=entry.focus_hours,
        tasks_completed=entry.tasks_completed,
        level=entry.level,
        experience=entry.experience,
        badges_count=len(entry.badges),
        achievements_count=len(entry.achievements),
        weekly_streak=entry.weekly_streak,
    )
