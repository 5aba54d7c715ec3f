"""CLI commands for focus-rank."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.logging import RichHandler

from focus_rank.config import get_db_path, get_log_level, load_catalog, load_config, save_config, set_db_path
from focus_rank.db import Database
from focus_rank.display import (
    console,
    print_achievements,
    print_error,
    print_leaderboard,
    print_power_up_result,
    print_progression,
    print_quest_result,
    print_session_result,
    print_user,
)
from focus_rank.errors import ProgressionError
from focus_rank.service import ProgressionService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="focus-rank",
        description="Quests, levels, achievements and a leaderboard for focus sessions",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command")

    user_parser = subparsers.add_parser("user", help="Manage users")
    user_sub = user_parser.add_subparsers(dest="user_command")
    user_add_p = user_sub.add_parser("add", help="Register a user")
    user_add_p.add_argument("email", help="Email address (also usable as identifier)")
    user_add_p.add_argument("--name", "-n", default="", help="Display name")

    prog_parser = subparsers.add_parser("progression", help="Show level, quests and achievements")
    prog_parser.add_argument("user", help="User id or email")
    prog_parser.add_argument("--json", action="store_true", help="Emit the raw progression response")

    session_parser = subparsers.add_parser("session", help="Record a completed focus session")
    session_parser.add_argument("user", help="User id or email")
    session_parser.add_argument("--score", "-s", type=float, required=True, help="Focus score 0-100")
    session_parser.add_argument("--minutes", "-m", type=int, required=True, help="Session duration in minutes")
    session_parser.add_argument("--team", action="store_true", help="Session was held in a team room")
    session_parser.add_argument("--tasks", type=int, default=0, help="Tasks completed during the session")

    quest_parser = subparsers.add_parser("quest", help="Set progress on an active quest")
    quest_parser.add_argument("user", help="User id or email")
    quest_parser.add_argument("quest_id", help="Quest id, e.g. daily-focus-2024-01-01")
    quest_parser.add_argument("--progress", "-p", type=float, required=True, help="New progress value")

    pu_parser = subparsers.add_parser("powerup", help="Buy or activate power-ups")
    pu_parser.add_argument("action", choices=["buy", "use"])
    pu_parser.add_argument("user", help="User id or email")
    pu_parser.add_argument("power_up_id", help="Power-up id, e.g. xp_boost_small")

    ach_parser = subparsers.add_parser("achievements", help="List achievements with progress")
    ach_parser.add_argument("user", help="User id or email")

    lb_parser = subparsers.add_parser("leaderboard", help="Show standings")
    lb_parser.add_argument("--user", "-u", default=None, help="Highlight this user and their neighbours")
    lb_parser.add_argument("--limit", "-l", type=int, default=10, help="Number of top entries")

    config_parser = subparsers.add_parser("config", help="Show or change settings")
    config_parser.add_argument("--db-path", default=None, help="SQLite database file")
    config_parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    return parser


def setup_logging(level: str) -> None:
    """Route log records through rich on the shared console."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config_path = Path(args.config).expanduser() if args.config else None
    setup_logging("DEBUG" if args.verbose else get_log_level(config_path))

    if args.command is None:
        parser.print_help()
        return
    if args.command == "config":
        do_config(config_path, db_path=args.db_path, log_level=args.log_level)
        return

    db = None
    try:
        db = Database(get_db_path(config_path))
        service = ProgressionService(db, catalog=load_catalog(config_path))
        if args.command == "user":
            if args.user_command != "add":
                parser.error("user: choose a subcommand (add)")
            do_user_add(service, email=args.email, name=args.name)
        elif args.command == "progression":
            do_progression(service, user=args.user, as_json=args.json)
        elif args.command == "session":
            do_session(
                service, user=args.user, score=args.score, minutes=args.minutes,
                team=args.team, tasks=args.tasks,
            )
        elif args.command == "quest":
            do_quest(service, user=args.user, quest_id=args.quest_id, progress=args.progress)
        elif args.command == "powerup":
            do_powerup(service, action=args.action, user=args.user, power_up_id=args.power_up_id)
        elif args.command == "achievements":
            do_achievements(service, user=args.user)
        elif args.command == "leaderboard":
            do_leaderboard(service, user=args.user, limit=args.limit)
    except ProgressionError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print_error(exc.to_dict())
        sys.exit(1)
    finally:
        if db is not None:
            db.close()


def do_user_add(service: ProgressionService, email: str, name: str = "") -> dict:
    """Register a user and initialize their progression."""
    user = service.add_user(email, name)
    service.initialize(user["id"])
    print_user(user)
    return user


def do_progression(service: ProgressionService, user: str, as_json: bool = False) -> dict:
    """Show the progression response for one user."""
    data = service.get_progression(service.resolve_user_id(user))
    if as_json:
        console.print_json(json.dumps(data))
    else:
        print_progression(data)
    return data


def do_session(
    service: ProgressionService,
    user: str,
    score: float,
    minutes: int,
    team: bool = False,
    tasks: int = 0,
) -> dict:
    """Record a completed focus session."""
    result = service.complete_session(
        service.resolve_user_id(user), focus_score=score, minutes=minutes, team=team, tasks_completed=tasks,
    )
    print_session_result(result)
    return result


def do_quest(service: ProgressionService, user: str, quest_id: str, progress: float) -> dict:
    """Set progress on a quest."""
    result = service.update_quest_progress(service.resolve_user_id(user), quest_id, progress)
    print_quest_result(result)
    return result


def do_powerup(service: ProgressionService, action: str, user: str, power_up_id: str) -> dict:
    """Buy a power-up or activate one from the inventory."""
    user_id = service.resolve_user_id(user)
    if action == "buy":
        result = service.purchase_power_up(user_id, power_up_id)
    else:
        result = service.activate_power_up(user_id, power_up_id)
    print_power_up_result(result)
    return result


def do_achievements(service: ProgressionService, user: str) -> dict:
    """Show all achievements with progress."""
    result = service.achievements(service.resolve_user_id(user))
    print_achievements(result["achievements"])
    return result


def do_leaderboard(service: ProgressionService, user: str | None = None, limit: int = 10) -> dict:
    """Show standings, optionally around one user."""
    user_id = service.resolve_user_id(user) if user else None
    result = service.leaderboard(user_id=user_id, limit=limit)
    print_leaderboard(result, highlight_user=user_id)
    return result


def do_config(config_path: Path | None = None, db_path: str | None = None, log_level: str | None = None) -> dict:
    """Persist the given settings and print the resulting config."""
    if db_path:
        set_db_path(Path(db_path).expanduser().resolve(), config_path)
    if log_level:
        config = load_config(config_path)
        config["log_level"] = log_level.upper()
        save_config(config, config_path)
    config = load_config(config_path)
    console.print_json(json.dumps(config))
    return config
