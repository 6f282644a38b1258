"""Exception types raised by the bridge."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for bridge runtime errors."""


class InvalidNameError(ValueError):
    """Identifier cannot be used to build a filesystem path."""


class ConfigError(ValueError):
    """Startup configuration is missing or invalid."""


class TaskNotFoundError(BridgeError):
    """Task file is missing or malformed when it must exist."""

    def __init__(self, team_name: str, task_id: str) -> None:
        super().__init__(f"Task file not found or malformed: {task_id} (team {team_name})")
        self.team_name = team_name
        self.task_id = task_id


class ExecutionFailed(BridgeError):
    """External CLI run ended without usable output."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class ExecutionAborted(BridgeError):
    """External CLI run was terminated on request before it finished."""
