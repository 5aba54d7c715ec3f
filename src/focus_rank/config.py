"""Configuration file management for focus-rank.

Reads and writes ~/.focus-rank/config.json for settings that don't belong in the DB
(database location, log level, a custom achievement catalog).
"""
from __future__ import annotations

import json
from pathlib import Path

from focus_rank.achievements import ACHIEVEMENTS, AchievementDef, catalog_from_config
from focus_rank.db import DEFAULT_DB_PATH
from focus_rank.errors import InvariantViolation

DEFAULT_CONFIG_PATH: Path = Path.home() / ".focus-rank" / "config.json"
DEFAULT_LOG_LEVEL = "WARNING"


def load_config(config_path: Path | None = None) -> dict:
    """Load config from JSON file. Returns {} if file missing or invalid."""
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(data: dict, config_path: Path | None = None) -> None:
    """Write config dict to JSON file. Creates parent dirs if needed."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


def get_db_path(config_path: Path | None = None) -> Path:
    """Return the configured database path, or the default one."""
    raw = load_config(config_path).get("db_path")
    if raw:
        return Path(raw).expanduser()
    return DEFAULT_DB_PATH


def set_db_path(db_path: Path, config_path: Path | None = None) -> None:
    """Persist the database path to config."""
    config = load_config(config_path)
    config["db_path"] = str(db_path)
    save_config(config, config_path)


def get_log_level(config_path: Path | None = None) -> str:
    return str(load_config(config_path).get("log_level", DEFAULT_LOG_LEVEL)).upper()


def load_catalog(config_path: Path | None = None) -> list[AchievementDef]:
    """Achievement catalog from config, falling back to the built-in one.

    Raises InvariantViolation if the configured catalog is malformed.
    """
    items = load_config(config_path).get("achievements")
    if items is None:
        return list(ACHIEVEMENTS)
    if not isinstance(items, list):
        raise InvariantViolation("Config key 'achievements' must be a list")
    return catalog_from_config(items)
