"""SQLite persistence handle for focus-rank.

Quests, achievements and power-ups are rows keyed by (user_id, id) rather than
arrays nested in a user document, so concurrent writers never rewrite each
other's parent record.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from focus_rank.achievements import Achievement
from focus_rank.errors import ConcurrentUpdate, StorageUnavailable
from focus_rank.leaderboard import LeaderboardEntry, build_entry
from focus_rank.powerups import OwnedPowerUp
from focus_rank.progression import UserProgression
from focus_rank.quests import Quest, quest_from_record, quest_to_payload

DEFAULT_DB_PATH = Path.home() / ".focus-rank" / "data.db"
BUSY_TIMEOUT_SECONDS = 5.0

_PROGRESSION_COLUMNS = (
    "level",
    "experience",
    "coins",
    "total_focus_time",
    "weekly_streak",
    "average_session_score",
    "sessions_completed",
    "tasks_completed",
    "team_sessions",
    "best_session_score",
    "last_active",
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Database:
    """SQLite database manager with WAL mode and explicit transactions."""

    def __init__(self, db_path: Path | None = None, timeout: float = BUSY_TIMEOUT_SECONDS) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._depth = 0
        try:
            # Autocommit: single statements are atomic, multi-statement writes use transaction().
            self.conn = sqlite3.connect(str(self.db_path), timeout=timeout, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open database {self.db_path}: {exc}") from exc
        try:
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.init_db()
        except sqlite3.Error as exc:
            self.conn.close()
            raise StorageUnavailable(f"Cannot open database {self.db_path}: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS progression (
                user_id TEXT PRIMARY KEY REFERENCES users(id),
                schema_version INTEGER NOT NULL DEFAULT 1,
                version INTEGER NOT NULL DEFAULT 0,
                level INTEGER NOT NULL DEFAULT 1,
                experience INTEGER NOT NULL DEFAULT 0,
                coins INTEGER NOT NULL DEFAULT 0,
                total_focus_time INTEGER NOT NULL DEFAULT 0,
                weekly_streak INTEGER NOT NULL DEFAULT 0,
                average_session_score REAL NOT NULL DEFAULT 0.0,
                sessions_completed INTEGER NOT NULL DEFAULT 0,
                tasks_completed INTEGER NOT NULL DEFAULT 0,
                team_sessions INTEGER NOT NULL DEFAULT 0,
                best_session_score REAL NOT NULL DEFAULT 0.0,
                last_active TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_progression_focus
                ON progression (total_focus_time);

            CREATE TABLE IF NOT EXISTS leaderboard (
                user_id TEXT PRIMARY KEY REFERENCES users(id),
                focus_hours REAL NOT NULL DEFAULT 0.0,
                tasks_completed INTEGER NOT NULL DEFAULT 0,
                level INTEGER NOT NULL DEFAULT 1,
                experience INTEGER NOT NULL DEFAULT 0,
                badges TEXT NOT NULL DEFAULT '[]',
                achievements TEXT NOT NULL DEFAULT '[]',
                weekly_streak INTEGER NOT NULL DEFAULT 0,
                last_active TEXT,
                score INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS quests (
                user_id TEXT NOT NULL,
                quest_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                payload TEXT NOT NULL,
                progress REAL NOT NULL DEFAULT 0.0,
                sessions_seen INTEGER NOT NULL DEFAULT 0,
                sessions_matched INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                start_date TEXT NOT NULL,
                end_date TEXT NOT NULL,
                completed_at TEXT,
                PRIMARY KEY (user_id, quest_id)
            );

            CREATE TABLE IF NOT EXISTS achievements (
                user_id TEXT NOT NULL,
                achievement_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                badge TEXT,
                unlocked_at TEXT NOT NULL,
                PRIMARY KEY (user_id, achievement_id)
            );

            CREATE TABLE IF NOT EXISTS power_ups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                power_up_id TEXT NOT NULL,
                purchased_at TEXT NOT NULL,
                activated_at TEXT,
                expires_at TEXT
            );
        """)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed statements in one BEGIN IMMEDIATE transaction.

        Nested use joins the outer transaction.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self.conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._depth = 0

    # ── Users ────────────────────────────────────────────────────────────────

    def add_user(self, email: str, name: str = "", user_id: str | None = None) -> dict:
        """Register a user. Registering an existing email returns the existing record."""
        self.conn.execute(
            "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(email) DO NOTHING",
            (user_id or uuid.uuid4().hex, email, name, datetime.now(tz=timezone.utc).isoformat()),
        )
        return self.find_user_by_email(email)

    def get_user(self, user_id: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def find_user_by_email(self, email: str) -> dict | None:
        row = self.conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return dict(row) if row else None

    # ── Progression ──────────────────────────────────────────────────────────

    def initialize_progression(self, progression: UserProgression) -> bool:
        """Insert progression (and its leaderboard projection) if the user has none.

        Returns True if this call created the record, False if it already existed.
        Existing records are never overwritten.
        """
        values = [getattr(progression, c) for c in _PROGRESSION_COLUMNS]
        values[_PROGRESSION_COLUMNS.index("last_active")] = _ts(progression.last_active)
        columns = ", ".join(("user_id", "schema_version", "version") + _PROGRESSION_COLUMNS)
        placeholders = ", ".join(["?"] * (len(_PROGRESSION_COLUMNS) + 3))
        with self.transaction():
            cursor = self.conn.execute(
                f"INSERT INTO progression ({columns}) VALUES ({placeholders}) "
                "ON CONFLICT(user_id) DO NOTHING",
                [progression.user_id, progression.schema_version, progression.version, *values],
            )
            created = cursor.rowcount == 1
            if created:
                self.save_leaderboard_entry(build_entry(progression))
        return created

    def get_progression(self, user_id: str) -> UserProgression | None:
        row = self.conn.execute(
            "SELECT * FROM progression WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["last_active"] = _parse_ts(data["last_active"])
        return UserProgression(**data)

    def update_progression(self, progression: UserProgression, expected_version: int) -> UserProgression:
        """Compare-and-swap write. Raises ConcurrentUpdate if the stored version moved."""
        set_clause = ", ".join(f"{c} = ?" for c in _PROGRESSION_COLUMNS)
        values = [getattr(progression, c) for c in _PROGRESSION_COLUMNS]
        values[_PROGRESSION_COLUMNS.index("last_active")] = _ts(progression.last_active)
        cursor = self.conn.execute(
            f"UPDATE progression SET {set_clause}, version = ? WHERE user_id = ? AND version = ?",
            [*values, expected_version + 1, progression.user_id, expected_version],
        )
        if cursor.rowcount != 1:
            raise ConcurrentUpdate(progression.user_id, expected_version)
        return replace(progression, version=expected_version + 1)

    def count_users_with_focus_above(self, minutes: int) -> int:
        """Number of users whose total focus time is strictly greater than minutes."""
        row = self.conn.execute(
            "SELECT COUNT(*) FROM progression WHERE total_focus_time > ?", (minutes,)
        ).fetchone()
        return row[0]

    # ── Leaderboard ──────────────────────────────────────────────────────────

    def save_leaderboard_entry(self, entry: LeaderboardEntry) -> None:
        """Upsert an entry; its score is computed here from the entry being written."""
        self.conn.execute(
            "INSERT INTO leaderboard (user_id, focus_hours, tasks_completed, level, experience, "
            "badges, achievements, weekly_streak, last_active, score) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET focus_hours = excluded.focus_hours, "
            "tasks_completed = excluded.tasks_completed, level = excluded.level, "
            "experience = excluded.experience, badges = excluded.badges, "
            "achievements = excluded.achievements, weekly_streak = excluded.weekly_streak, "
            "last_active = excluded.last_active, score = excluded.score",
            (
                entry.user_id,
                entry.focus_hours,
                entry.tasks_completed,
                entry.level,
                entry.experience,
                json.dumps(sorted(entry.badges)),
                json.dumps(sorted(entry.achievements)),
                entry.weekly_streak,
                _ts(entry.last_active),
                entry.score,
            ),
        )

    def _row_to_entry(self, row: sqlite3.Row) -> LeaderboardEntry:
        return LeaderboardEntry(
            user_id=row["user_id"],
            focus_hours=row["focus_hours"],
            tasks_completed=row["tasks_completed"],
            level=row["level"],
            experience=row["experience"],
            badges=frozenset(json.loads(row["badges"])),
            achievements=frozenset(json.loads(row["achievements"])),
            weekly_streak=row["weekly_streak"],
            last_active=_parse_ts(row["last_active"]),
        )

    def get_leaderboard_entry(self, user_id: str) -> LeaderboardEntry | None:
        row = self.conn.execute(
            "SELECT * FROM leaderboard WHERE user_id = ?", (user_id,)
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def get_all_leaderboard_entries(self) -> list[LeaderboardEntry]:
        rows = self.conn.execute("SELECT * FROM leaderboard ORDER BY user_id").fetchall()
        return [self._row_to_entry(row) for row in rows]

    # ── Quests ───────────────────────────────────────────────────────────────

    def save_quest(self, user_id: str, quest: Quest) -> None:
        """Insert a quest or update its progress columns."""
        self.conn.execute(
            "INSERT INTO quests (user_id, quest_id, kind, payload, progress, sessions_seen, "
            "sessions_matched, status, start_date, end_date, completed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id, quest_id) DO UPDATE SET progress = excluded.progress, "
            "sessions_seen = excluded.sessions_seen, sessions_matched = excluded.sessions_matched, "
            "status = excluded.status, completed_at = excluded.completed_at",
            (
                user_id,
                quest.id,
                quest.kind.value,
                json.dumps(quest_to_payload(quest)),
                quest.current,
                quest.sessions_seen,
                quest.sessions_matched,
                quest.status.value,
                _ts(quest.start_date),
                _ts(quest.end_date),
                _ts(quest.completed_at),
            ),
        )

    def get_quests(self, user_id: str) -> dict[str, Quest]:
        """All stored quests of a user (expired ones included), keyed by quest id."""
        rows = self.conn.execute(
            "SELECT * FROM quests WHERE user_id = ? ORDER BY start_date, quest_id", (user_id,)
        ).fetchall()
        quests = {}
        for row in rows:
            record = dict(row)
            quests[record["quest_id"]] = quest_from_record(record, json.loads(record["payload"]))
        return quests

    # ── Achievements ─────────────────────────────────────────────────────────

    def unlock_achievement(self, user_id: str, achievement: Achievement) -> bool:
        """Record an unlock. Returns False if it was already unlocked (first unlock wins)."""
        cursor = self.conn.execute(
            "INSERT INTO achievements (user_id, achievement_id, name, description, badge, unlocked_at) "
            "VALUES (?, ?, ?, ?, ?, ?) ON CONFLICT(user_id, achievement_id) DO NOTHING",
            (
                user_id,
                achievement.id,
                achievement.name,
                achievement.description,
                achievement.badge,
                _ts(achievement.unlocked_at),
            ),
        )
        return cursor.rowcount == 1

    def get_achievements(self, user_id: str) -> list[Achievement]:
        rows = self.conn.execute(
            "SELECT * FROM achievements WHERE user_id = ? ORDER BY unlocked_at, achievement_id",
            (user_id,),
        ).fetchall()
        return [
            Achievement(
                id=row["achievement_id"],
                name=row["name"],
                description=row["description"],
                unlocked_at=_parse_ts(row["unlocked_at"]),
                badge=row["badge"],
            )
            for row in rows
        ]

    # ── Power-ups ────────────────────────────────────────────────────────────

    def _row_to_power_up(self, row: sqlite3.Row) -> OwnedPowerUp:
        return OwnedPowerUp(
            id=row["id"],
            power_up_id=row["power_up_id"],
            purchased_at=_parse_ts(row["purchased_at"]),
            activated_at=_parse_ts(row["activated_at"]),
            expires_at=_parse_ts(row["expires_at"]),
        )

    def add_power_up(self, user_id: str, power_up_id: str, purchased_at: datetime) -> OwnedPowerUp:
        cursor = self.conn.execute(
            "INSERT INTO power_ups (user_id, power_up_id, purchased_at) VALUES (?, ?, ?)",
            (user_id, power_up_id, _ts(purchased_at)),
        )
        return OwnedPowerUp(id=cursor.lastrowid, power_up_id=power_up_id, purchased_at=purchased_at)

    def get_power_ups(self, user_id: str) -> list[OwnedPowerUp]:
        rows = self.conn.execute(
            "SELECT * FROM power_ups WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [self._row_to_power_up(row) for row in rows]

    def activate_power_up(
        self, user_id: str, power_up_id: str, activated_at: datetime, expires_at: datetime
    ) -> OwnedPowerUp | None:
        """Activate the oldest unused inventory item. Returns None if there is none."""
        with self.transaction():
            row = self.conn.execute(
                "SELECT * FROM power_ups WHERE user_id = ? AND power_up_id = ? "
                "AND activated_at IS NULL ORDER BY id LIMIT 1",
                (user_id, power_up_id),
            ).fetchone()
            if row is None:
                return None
            self.conn.execute(
                "UPDATE power_ups SET activated_at = ?, expires_at = ? WHERE id = ?",
                (_ts(activated_at), _ts(expires_at), row["id"]),
            )
        return replace(self._row_to_power_up(row), activated_at=activated_at, expires_at=expires_at)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
