"""Daily and weekly quest generation for focus-rank.

Generation is deterministic: the same (stats, now) always yields the same
quests with the same ids, so concurrent requests agree on what exists.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from focus_rank.errors import InvariantViolation
from focus_rank.progression import UserProgression

STREAK_MASTER_MIN_STREAK = 5


class QuestKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class RequirementType(str, Enum):
    FOCUS_TIME = "focus_time"  # minutes of focus inside the window
    SESSIONS = "sessions"  # sessions scoring at least min_score
    PRODUCTIVITY = "productivity"  # average session score inside the window
    TEAM_PARTICIPATION = "team_participation"  # percent of sessions held in team rooms


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class QuestRequirement:
    type: RequirementType
    target: float
    min_score: float = 0.0
    min_sessions: int = 0


@dataclass(frozen=True)
class QuestReward:
    xp: int
    coins: int
    achievement: str | None = None


@dataclass(frozen=True)
class Quest:
    id: str
    kind: QuestKind
    name: str
    description: str
    difficulty: str
    requirement: QuestRequirement
    reward: QuestReward
    start_date: datetime
    end_date: datetime
    current: float = 0.0
    sessions_seen: int = 0
    sessions_matched: int = 0
    status: QuestStatus = QuestStatus.ACTIVE
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.end_date <= self.start_date:
            raise InvariantViolation(
                f"Quest {self.id} window is empty: {self.start_date.isoformat()} -> {self.end_date.isoformat()}"
            )

    def is_active(self, now: datetime) -> bool:
        """A quest is active iff now < end_date."""
        return now < self.end_date

    def is_claimable(self, now: datetime) -> bool:
        return self.status is QuestStatus.ACTIVE and self.is_active(now)

    def is_satisfied(self) -> bool:
        return (
            self.current >= self.requirement.target
            and self.sessions_seen >= self.requirement.min_sessions
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.kind.value,
            "difficulty": self.difficulty,
            "requirement": {
                "type": self.requirement.type.value,
                "target": self.requirement.target,
                "current": self.current,
            },
            "rewards": {
                "xp": self.reward.xp,
                "coins": self.reward.coins,
                "achievement": self.reward.achievement,
            },
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "status": self.status.value,
        }


# (id prefix, name, description, difficulty, requirement, reward)
_DAILY_TEMPLATES = [
    (
        "daily-focus",
        "Daily Focus Challenge",
        "Complete 2 hours of focused work today",
        "easy",
        QuestRequirement(RequirementType.FOCUS_TIME, 120),
        QuestReward(xp=100, coins=50),
    ),
    (
        "daily-productivity",
        "Consistency Champion",
        "Keep your average focus score at 80% or above today",
        "medium",
        QuestRequirement(RequirementType.PRODUCTIVITY, 80, min_sessions=1),
        QuestReward(xp=150, coins=75),
    ),
]

_STREAK_MASTER_TEMPLATE = (
    "daily-streak-master",
    "Streak Master",
    "Complete 3 focus sessions with a 90%+ focus score",
    "hard",
    QuestRequirement(RequirementType.SESSIONS, 3, min_score=90),
    QuestReward(xp=250, coins=100, achievement="streak_master"),
)

_WEEKLY_TEMPLATES = [
    (
        "weekly-focus",
        "Weekly Focus Master",
        "Complete 10 hours of focused work this week",
        "medium",
        QuestRequirement(RequirementType.FOCUS_TIME, 600),
        QuestReward(xp=500, coins=250, achievement="weekly_master"),
    ),
    (
        "weekly-team",
        "Team Player",
        "Hold at least half of this week's sessions in team rooms",
        "hard",
        QuestRequirement(RequirementType.TEAM_PARTICIPATION, 50, min_sessions=3),
        QuestReward(xp=750, coins=375, achievement="team_player"),
    ),
]


def as_utc(now: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def day_start(now: datetime) -> datetime:
    return as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)


def week_start(now: datetime) -> datetime:
    """Monday 00:00 UTC of the ISO week containing now."""
    start = day_start(now)
    return start - timedelta(days=start.weekday())


def _build(kind: QuestKind, template: tuple, start: datetime, end: datetime) -> Quest:
    prefix, name, description, difficulty, requirement, reward = template
    return Quest(
        id=f"{prefix}-{start.date().isoformat()}",
        kind=kind,
        name=name,
        description=description,
        difficulty=difficulty,
        requirement=requirement,
        reward=reward,
        start_date=start,
        end_date=end,
    )


def generate_daily(stats: UserProgression, now: datetime) -> list[Quest]:
    """Daily quests valid from today 00:00 UTC for 24 hours."""
    start = day_start(now)
    end = start + timedelta(days=1)
    templates = list(_DAILY_TEMPLATES)
    if stats.weekly_streak >= STREAK_MASTER_MIN_STREAK:
        templates.append(_STREAK_MASTER_TEMPLATE)
    return [_build(QuestKind.DAILY, t, start, end) for t in templates]


def generate_weekly(stats: UserProgression, now: datetime) -> list[Quest]:
    """Weekly quests spanning 7 days from the start of the current week."""
    start = week_start(now)
    end = start + timedelta(days=7)
    return [_build(QuestKind.WEEKLY, t, start, end) for t in _WEEKLY_TEMPLATES]


def filter_active(quests: list[Quest], now: datetime) -> list[Quest]:
    """Keep quests whose end_date is strictly after now."""
    now = as_utc(now)
    return [q for q in quests if q.is_active(now)]


def merge_stored(generated: list[Quest], stored: dict[str, Quest]) -> list[Quest]:
    """Replace generated quests with their stored (progressed) copies where present.

    Stored quests that were not regenerated (earlier windows, or a streak
    quest the current streak no longer offers) follow, so history is kept;
    filter_active decides what is surfaced.
    """
    generated_ids = {q.id for q in generated}
    merged = [stored.get(q.id, q) for q in generated]
    merged.extend(q for quest_id, q in stored.items() if quest_id not in generated_ids)
    return merged


def _complete_if_satisfied(quest: Quest, now: datetime) -> Quest:
    if quest.status is QuestStatus.ACTIVE and quest.is_satisfied():
        return replace(quest, status=QuestStatus.COMPLETED, completed_at=now)
    return quest


def advance(quest: Quest, minutes: int, focus_score: float, team: bool, now: datetime) -> Quest:
    """Fold one completed session into an active quest's progress."""
    if not quest.is_claimable(now):
        return quest
    req = quest.requirement
    seen = quest.sessions_seen + 1
    matched = quest.sessions_matched
    if req.type is RequirementType.FOCUS_TIME:
        current = quest.current + minutes
    elif req.type is RequirementType.SESSIONS:
        if focus_score >= req.min_score:
            matched += 1
        current = float(matched)
    elif req.type is RequirementType.PRODUCTIVITY:
        current = (quest.current * quest.sessions_seen + focus_score) / seen
    else:
        if team:
            matched += 1
        current = matched / seen * 100
    progressed = replace(quest, current=current, sessions_seen=seen, sessions_matched=matched)
    return _complete_if_satisfied(progressed, now)


def set_progress(quest: Quest, progress: float, now: datetime) -> Quest:
    """Set progress directly (manual tracking). Completes the quest on reaching target."""
    progressed = replace(
        quest,
        current=progress,
        sessions_seen=max(quest.sessions_seen, quest.requirement.min_sessions),
    )
    return _complete_if_satisfied(progressed, now)


def quest_to_payload(quest: Quest) -> dict:
    """Static definition of a quest for storage (progress lives in its own columns)."""
    return {
        "name": quest.name,
        "description": quest.description,
        "difficulty": quest.difficulty,
        "requirement": {
            "type": quest.requirement.type.value,
            "target": quest.requirement.target,
            "min_score": quest.requirement.min_score,
            "min_sessions": quest.requirement.min_sessions,
        },
        "reward": {
            "xp": quest.reward.xp,
            "coins": quest.reward.coins,
            "achievement": quest.reward.achievement,
        },
    }


def quest_from_record(record: dict, payload: dict) -> Quest:
    """Rebuild a Quest from a stored row and its decoded payload."""
    req = payload["requirement"]
    reward = payload["reward"]
    completed_at = record.get("completed_at")
    return Quest(
        id=record["quest_id"],
        kind=QuestKind(record["kind"]),
        name=payload["name"],
        description=payload["description"],
        difficulty=payload["difficulty"],
        requirement=QuestRequirement(
            type=RequirementType(req["type"]),
            target=req["target"],
            min_score=req.get("min_score", 0.0),
            min_sessions=req.get("min_sessions", 0),
        ),
        reward=QuestReward(
            xp=reward["xp"], coins=reward["coins"], achievement=reward.get("achievement")
        ),
        start_date=datetime.fromisoformat(record["start_date"]),
        end_date=datetime.fromisoformat(record["end_date"]),
        current=record["progress"],
        sessions_seen=record["sessions_seen"],
        sessions_matched=record["sessions_matched"],
        status=QuestStatus(record["status"]),
        completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
    )
