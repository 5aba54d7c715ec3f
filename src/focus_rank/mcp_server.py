"""MCP server for focus-rank.

Exposes focus-rank progression as MCP tools so an assistant can query and
record focus sessions mid-conversation.
Run via: python3 -m focus_rank.mcp_server
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from focus_rank.errors import ProgressionError

mcp = FastMCP(name="focus-rank")


def _get_db():
    from focus_rank.config import get_db_path
    from focus_rank.db import Database
    return Database(get_db_path())


def _get_service(db):
    from focus_rank.config import load_catalog
    from focus_rank.service import ProgressionService
    return ProgressionService(db, catalog=load_catalog())


@contextmanager
def _open_service() -> Iterator[Any]:
    """One database connection per tool call, closed on every exit path."""
    db = _get_db()
    try:
        yield _get_service(db)
    finally:
        db.close()


@mcp.tool()
def get_progression(user: str) -> dict[str, Any]:
    """Get quests, power-ups, stats (level, XP, coins, streak, rank) and achievements.

    user: user id or email.
    """
    try:
        with _open_service() as service:
            return service.get_progression(service.resolve_user_id(user))
    except ProgressionError as exc:
        return exc.to_dict()


@mcp.tool()
def complete_session(
    user: str, focus_score: float, minutes: int, team: bool = False, tasks_completed: int = 0
) -> dict[str, Any]:
    """Record a finished focus session and return rewards, quest and achievement updates.

    focus_score: 0-100. minutes: session duration. team: held in a team room.
    """
    try:
        with _open_service() as service:
            return service.complete_session(
                service.resolve_user_id(user),
                focus_score=focus_score,
                minutes=minutes,
                team=team,
                tasks_completed=tasks_completed,
            )
    except ProgressionError as exc:
        return exc.to_dict()


@mcp.tool()
def get_leaderboard(user: str = "", limit: int = 10) -> dict[str, Any]:
    """Get standings by leaderboard score.

    user: optional user id or email; adds their rank and neighbouring entries.
    """
    try:
        with _open_service() as service:
            user_id = service.resolve_user_id(user) if user else None
            return service.leaderboard(user_id=user_id, limit=limit)
    except ProgressionError as exc:
        return exc.to_dict()


@mcp.tool()
def get_achievements(user: str) -> dict[str, Any]:
    """Get all achievements with unlock status and progress."""
    try:
        with _open_service() as service:
            return service.achievements(service.resolve_user_id(user))
    except ProgressionError as exc:
        return exc.to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
