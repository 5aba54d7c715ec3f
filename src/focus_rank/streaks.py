"""Streak transition on session completion."""

from __future__ import annotations

from datetime import date, datetime


def _day(value: datetime | date) -> date:
    return value.date() if isinstance(value, datetime) else value


def next_streak(current_streak: int, last_active: datetime | None, now: datetime) -> int:
    """Return the streak after a session completed at now.

    Rules:
    - last session yesterday: streak + 1
    - last session today: unchanged (minimum 1)
    - a last session dated after now (clock skew) counts as today
    - no previous session, or a gap of 2+ days: restart at 1
    """
    if last_active is None:
        return 1
    gap = (_day(now) - _day(last_active)).days
    if gap == 1:
        return current_streak + 1
    if gap <= 0:
        return max(current_streak, 1)
    return 1
