"""Level curve calculation. Pure functions, no side effects."""

import math

XP_PER_LEVEL = 1000
LEVEL_EXPONENT = 1.5


def xp_for_level(level: int) -> int:
    """Total XP needed to reach a level. Formula: floor(1000 * (L - 1)^1.5)."""
    if level <= 1:
        return 0
    return math.floor(XP_PER_LEVEL * ((level - 1) ** LEVEL_EXPONENT))


def level_from_xp(total_xp: int) -> int:
    """Given total XP, return current level (>= 1).

    Formula: floor((xp / 1000)^(1/1.5)) + 1, corrected against xp_for_level so
    float error at exact thresholds (8000 XP -> level 5) never drops a level.
    """
    if total_xp <= 0:
        return 1
    level = math.floor((total_xp / XP_PER_LEVEL) ** (1 / LEVEL_EXPONENT)) + 1
    while xp_for_level(level + 1) <= total_xp:
        level += 1
    while level > 1 and xp_for_level(level) > total_xp:
        level -= 1
    return level


def xp_progress_in_level(total_xp: int) -> tuple[int, int]:
    """Return (xp_earned_in_current_level, xp_span_of_current_level)."""
    level = level_from_xp(total_xp)
    floor_xp = xp_for_level(level)
    return (max(total_xp, 0) - floor_xp, xp_for_level(level + 1) - floor_xp)


def xp_progress_pct(total_xp: int) -> float:
    """Percentage (0-100) of the way from the current level to the next."""
    current, span = xp_progress_in_level(total_xp)
    if span <= 0:
        return 0.0
    return current / span * 100


def award_xp(current_xp: int, amount: int) -> tuple[int, bool]:
    """Add XP and report whether the level went up: (new_xp, leveled_up)."""
    new_xp = current_xp + amount
    return new_xp, level_from_xp(new_xp) > level_from_xp(current_xp)
