"""Reward calculation for completed focus sessions.

Pure functions that convert one focus session into XP and coin deltas.
All rounding is half-up (focus_rank.score.round_half_up).
"""

from __future__ import annotations

from dataclasses import dataclass

from focus_rank.score import round_half_up

# Base rates at 100% focus score
XP_PER_MINUTE = 10
COINS_PER_MINUTE = 5

# Streak bonus: +10% per streak day, capped at +50%
STREAK_BONUS_PER_DAY = 0.1
MAX_STREAK_BONUS = 0.5

# Focus score bonuses (threshold -> (xp, coins)), highest applicable wins
FOCUS_BONUSES: dict[int, tuple[int, int]] = {
    85: (25, 15),
    95: (50, 25),
}

# Duration milestones in minutes (threshold -> (xp, coins)), highest applicable wins
DURATION_MILESTONES: dict[int, tuple[int, int]] = {
    30: (50, 25),
    60: (100, 50),
}


@dataclass
class SessionRewards:
    """Reward breakdown for a single completed session."""

    xp: int
    coins: int
    streak_bonus: float
    breakdown: dict[str, int]


def _clamp_non_negative(value: float) -> float:
    """Treat negative values as 0."""
    return max(0.0, value)


def get_streak_bonus(weekly_streak: int) -> float:
    """Fractional bonus for the current streak. E.g. 3 -> 0.3, 9 -> 0.5."""
    return min(max(weekly_streak, 0) * STREAK_BONUS_PER_DAY, MAX_STREAK_BONUS)


def _highest_tier(table: dict[int, tuple[int, int]], value: float) -> tuple[int, int]:
    bonus = (0, 0)
    for threshold in sorted(table):
        if value >= threshold:
            bonus = table[threshold]
    return bonus


def calculate_session_rewards(
    focus_score: float,
    minutes: float,
    weekly_streak: int = 0,
    xp_multiplier: float = 1.0,
    coin_multiplier: float = 1.0,
) -> SessionRewards:
    """Calculate XP and coins for one session.

    1. Base rewards scale with focus score and duration.
    2. Streak bonus multiplies both (up to +50%).
    3. Flat focus-score bonus and duration milestone are added.
    4. Active power-up multipliers apply last.
    """
    focus_score = min(_clamp_non_negative(focus_score), 100.0)
    minutes = _clamp_non_negative(minutes)

    base_xp = round_half_up(focus_score / 100 * minutes * XP_PER_MINUTE)
    base_coins = round_half_up(focus_score / 100 * minutes * COINS_PER_MINUTE)

    streak_bonus = get_streak_bonus(weekly_streak)
    xp = round_half_up(base_xp * (1 + streak_bonus))
    coins = round_half_up(base_coins * (1 + streak_bonus))

    focus_xp, focus_coins = _highest_tier(FOCUS_BONUSES, focus_score)
    duration_xp, duration_coins = _highest_tier(DURATION_MILESTONES, minutes)
    xp += focus_xp + duration_xp
    coins += focus_coins + duration_coins

    boosted_xp = round_half_up(xp * xp_multiplier)
    boosted_coins = round_half_up(coins * coin_multiplier)

    return SessionRewards(
        xp=boosted_xp,
        coins=boosted_coins,
        streak_bonus=streak_bonus,
        breakdown={
            "base_xp": base_xp,
            "base_coins": base_coins,
            "focus_bonus_xp": focus_xp,
            "duration_bonus_xp": duration_xp,
            "power_up_xp": boosted_xp - xp,
            "power_up_coins": boosted_coins - coins,
        },
    )
