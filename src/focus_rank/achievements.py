"""Achievement definitions and unlock evaluation for focus-rank."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from focus_rank.errors import InvariantViolation


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


# Fields of UserProgression.achievement_stats() a criterion may reference.
CHECK_FIELDS = frozenset({
    "level",
    "experience",
    "coins",
    "total_focus_time",
    "weekly_streak",
    "average_session_score",
    "best_session_score",
    "sessions_completed",
    "tasks_completed",
    "team_sessions",
})


@dataclass(frozen=True)
class AchievementDef:
    id: str
    name: str
    description: str
    rarity: Rarity
    target: float
    check_field: str | None  # None: only granted as a quest reward
    badge: str | None = None
    xp_reward: int = 0


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    unlocked_at: datetime | None
    badge: str | None = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "name": self.name, "description": self.description}
        if self.badge:
            data["badge"] = self.badge
        if self.unlocked_at is not None:
            data["unlockedAt"] = self.unlocked_at.isoformat()
        return data


ACHIEVEMENTS: list[AchievementDef] = [
    AchievementDef(
        id="first_focus",
        name="First Focus",
        description="Complete your first focus session",
        rarity=Rarity.COMMON,
        target=1,
        check_field="sessions_completed",
    ),
    AchievementDef(
        id="deep_worker",
        name="Deep Worker",
        description="Accumulate 10 hours of focused work",
        rarity=Rarity.COMMON,
        target=600,
        check_field="total_focus_time",
    ),
    AchievementDef(
        id="focus_master",
        name="Focus Master",
        description="Accumulate 60 hours of focused work",
        rarity=Rarity.RARE,
        target=3600,
        check_field="total_focus_time",
        badge="focus_master",
        xp_reward=500,
    ),
    AchievementDef(
        id="streak_warrior",
        name="Streak Warrior",
        description="Maintain a 7-day focus streak",
        rarity=Rarity.RARE,
        target=7,
        check_field="weekly_streak",
        badge="streak_warrior",
        xp_reward=1000,
    ),
    AchievementDef(
        id="perfectionist",
        name="Perfectionist",
        description="Complete a session with a 95%+ focus score",
        rarity=Rarity.RARE,
        target=95,
        check_field="best_session_score",
        badge="perfectionist",
        xp_reward=750,
    ),
    AchievementDef(
        id="centurion",
        name="Centurion",
        description="Complete 100 focus sessions",
        rarity=Rarity.EPIC,
        target=100,
        check_field="sessions_completed",
    ),
    AchievementDef(
        id="rising_star",
        name="Rising Star",
        description="Reach level 5",
        rarity=Rarity.COMMON,
        target=5,
        check_field="level",
    ),
    AchievementDef(
        id="team_spirit",
        name="Team Spirit",
        description="Hold 10 sessions in team rooms",
        rarity=Rarity.RARE,
        target=10,
        check_field="team_sessions",
    ),
    AchievementDef(
        id="streak_master",
        name="Streak Master",
        description="Finish the Streak Master daily quest",
        rarity=Rarity.EPIC,
        target=1,
        check_field=None,
    ),
    AchievementDef(
        id="weekly_master",
        name="Weekly Focus Master",
        description="Finish the Weekly Focus Master quest",
        rarity=Rarity.RARE,
        target=1,
        check_field=None,
    ),
    AchievementDef(
        id="team_player",
        name="Team Player",
        description="Finish the Team Player weekly quest",
        rarity=Rarity.RARE,
        target=1,
        check_field=None,
        badge="team_player",
    ),
]


def achievement_progress(stats: dict, definition: AchievementDef) -> float:
    """Progress toward a definition in [0.0, 1.0]: min(current / target, 1.0)."""
    if definition.check_field is None or definition.target <= 0:
        return 0.0
    current = stats.get(definition.check_field, 0)
    return max(0.0, min(current / definition.target, 1.0))


def is_satisfied(stats: dict, definition: AchievementDef) -> bool:
    return achievement_progress(stats, definition) >= 1.0


def evaluate(
    stats: dict,
    catalog: list[AchievementDef],
    already_unlocked: set[str],
    now: datetime,
) -> list[Achievement]:
    """Return achievements newly unlocked by stats, stamped with now.

    Never re-emits an id in already_unlocked. Criteria are independent, so the
    order of the catalog does not change the resulting set.
    """
    unlocked: list[Achievement] = []
    for definition in catalog:
        if definition.id in already_unlocked:
            continue
        if is_satisfied(stats, definition):
            unlocked.append(unlock(definition, now))
    return unlocked


def unlock(definition: AchievementDef, now: datetime) -> Achievement:
    return Achievement(
        id=definition.id,
        name=definition.name,
        description=definition.description,
        unlocked_at=now,
        badge=definition.badge,
    )


def find_definition(catalog: list[AchievementDef], achievement_id: str) -> AchievementDef | None:
    return next((d for d in catalog if d.id == achievement_id), None)


def catalog_from_config(items: list[dict]) -> list[AchievementDef]:
    """Build a catalog from config-file dicts.

    Raises InvariantViolation on a malformed item (unknown check_field,
    non-positive target, duplicate or missing id).
    """
    catalog: list[AchievementDef] = []
    seen: set[str] = set()
    for item in items:
        try:
            definition = AchievementDef(
                id=str(item["id"]),
                name=str(item["name"]),
                description=str(item.get("description", "")),
                rarity=Rarity(item.get("rarity", Rarity.COMMON.value)),
                target=float(item.get("target", 1)),
                check_field=item.get("check_field"),
                badge=item.get("badge"),
                xp_reward=int(item.get("xp_reward", 0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvariantViolation(f"Malformed achievement definition {item!r}: {exc}") from exc
        if definition.id in seen:
            raise InvariantViolation(f"Duplicate achievement id: {definition.id}")
        if definition.check_field is not None and definition.check_field not in CHECK_FIELDS:
            raise InvariantViolation(
                f"Achievement {definition.id} checks unknown field {definition.check_field!r}"
            )
        if definition.target <= 0 or definition.xp_reward < 0:
            raise InvariantViolation(f"Achievement {definition.id} has a non-positive target or negative reward")
        seen.add(definition.id)
        catalog.append(definition)
    return catalog
