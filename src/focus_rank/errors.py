"""Error taxonomy for focus-rank.

Every failure a caller can observe is a ProgressionError. Surfaces (CLI, MCP)
turn them into user-facing messages with to_dict().
"""
from __future__ import annotations


class ProgressionError(Exception):
    """Base class for all focus-rank errors."""

    #: HTTP-equivalent status for thin API layers.
    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.__class__.__name__, "message": self.message}


class Unauthenticated(ProgressionError):
    status = 401


class UserNotFound(ProgressionError):
    status = 404

    def __init__(self, user: str) -> None:
        super().__init__(f"User not found: {user}")
        self.user = user


class StorageUnavailable(ProgressionError):
    """A read or write against the persistence handle failed."""

    status = 500


class ConcurrentUpdate(StorageUnavailable):
    """Optimistic version check lost against a concurrent writer."""

    def __init__(self, user_id: str, expected_version: int) -> None:
        super().__init__(
            f"Progression for {user_id} changed concurrently (expected version {expected_version})"
        )
        self.user_id = user_id
        self.expected_version = expected_version


class InvariantViolation(ProgressionError):
    """Data or programming error: negative counters, malformed windows, bad catalog."""

    status = 500


class QuestNotFound(ProgressionError):
    status = 404

    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Quest not found: {quest_id}")
        self.quest_id = quest_id


class QuestNotActive(ProgressionError):
    status = 400

    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Quest is not active: {quest_id}")
        self.quest_id = quest_id


class PowerUpNotFound(ProgressionError):
    status = 400


class InsufficientCoins(ProgressionError):
    status = 400

    def __init__(self, cost: int, balance: int) -> None:
        super().__init__(f"Insufficient coins: need {cost}, have {balance}")
        self.cost = cost
        self.balance = balance


class InvalidSession(ProgressionError):
    """Reported activity (score, duration, tasks, quest progress) is out of range."""

    status = 400
