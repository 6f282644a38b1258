"""tmux session that hosts a worker daemon."""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

from team_bridge.bridge.naming import sanitize_name

logger = logging.getLogger(__name__)

SESSION_PREFIX = "omc-team"


def session_name(team_name: str, worker_name: str) -> str:
    return f"{SESSION_PREFIX}-{sanitize_name(team_name)}-{sanitize_name(worker_name)}"


class HostSession(Protocol):
    """Terminal session the daemon runs in."""

    def terminate(self, team_name: str, worker_name: str) -> None:
        """End the session; may end the calling process too."""


class TmuxSession:
    """Kills the worker's tmux session, which also ends the daemon inside it."""

    def terminate(self, team_name: str, worker_name: str) -> None:
        name = session_name(team_name, worker_name)
        try:
            subprocess.run(  # noqa: S603
                ["tmux", "kill-session", "-t", name],  # noqa: S607
                check=False,
                capture_output=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as error:
            logger.debug("tmux kill-session %s failed: %s", name, error)


class DetachedSession:
    """No hosting session: nothing to terminate."""

    def terminate(self, team_name: str, worker_name: str) -> None:
        logger.debug("No host session to terminate for %s@%s", worker_name, team_name)
