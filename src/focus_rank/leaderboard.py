"""Leaderboard projection and ranking for focus-rank.

Pure functions for building entries from progression state and for ranking
users against a population. Ties are never broken: every rank is
"number of strictly better users + 1", so equal values share a rank.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from focus_rank.errors import UserNotFound
from focus_rank.progression import UserProgression
from focus_rank.score import score as score_formula


@dataclass(frozen=True)
class LeaderboardEntry:
    """Derived view of one user. score is computed from the entry's own fields."""

    user_id: str
    focus_hours: float = 0.0
    tasks_completed: int = 0
    level: int = 1
    experience: int = 0
    badges: frozenset[str] = frozenset()
    achievements: frozenset[str] = frozenset()
    weekly_streak: int = 0
    last_active: datetime | None = None

    @property
    def score(self) -> int:
        return score_formula(self)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "focusHours": self.focus_hours,
            "tasksCompleted": self.tasks_completed,
            "level": self.level,
            "experience": self.experience,
            "badges": sorted(self.badges),
            "achievements": sorted(self.achievements),
            "weeklyStreak": self.weekly_streak,
            "lastActive": self.last_active.isoformat() if self.last_active else None,
            "score": self.score,
        }


def build_entry(
    progression: UserProgression,
    badges: Iterable[str] = (),
    achievements: Iterable[str] = (),
) -> LeaderboardEntry:
    """Project a progression snapshot (plus unlocked ids) into a leaderboard entry."""
    return LeaderboardEntry(
        user_id=progression.user_id,
        focus_hours=progression.focus_hours,
        tasks_completed=progression.tasks_completed,
        level=progression.level,
        experience=progression.experience,
        badges=frozenset(badges),
        achievements=frozenset(achievements),
        weekly_streak=progression.weekly_streak,
        last_active=progression.last_active,
    )


def rank_from_count(users_ahead: int) -> int:
    """Rank given the number of users strictly ahead."""
    return users_ahead + 1


def rank_user(user_id: str, population: Mapping[str, float]) -> int:
    """Rank of user_id by total focus time: (users with strictly more) + 1.

    population maps user id -> total focus time. Raises UserNotFound when the
    user is not part of the population, since rank is undefined then.
    """
    if user_id not in population:
        raise UserNotFound(user_id)
    mine = population[user_id]
    return rank_from_count(sum(1 for value in population.values() if value > mine))


@dataclass(frozen=True)
class Standing:
    rank: int
    entry: LeaderboardEntry

    def to_dict(self) -> dict:
        return {"rank": self.rank, **self.entry.to_dict()}


def rank_entries(entries: list[LeaderboardEntry]) -> list[Standing]:
    """Order entries by score descending and attach strictly-greater ranks.

    Display order within a tie follows user_id; the rank itself is shared.
    """
    ordered = sorted(entries, key=lambda e: (-e.score, e.user_id))
    standings: list[Standing] = []
    for i, entry in enumerate(ordered):
        if i > 0 and entry.score == ordered[i - 1].score:
            rank = standings[-1].rank
        else:
            rank = i + 1
        standings.append(Standing(rank=rank, entry=entry))
    return standings


def nearby(standings: list[Standing], user_id: str, radius: int = 3) -> list[Standing]:
    """Standings within radius positions of user_id (empty if absent)."""
    index = next((i for i, s in enumerate(standings) if s.entry.user_id == user_id), None)
    if index is None:
        return []
    return standings[max(0, index - radius): index + radius + 1]
