"""Overwrite-only heartbeat file mirroring a worker daemon's status."""

from __future__ import annotations

import logging
from pathlib import Path

from team_bridge.bridge.fileio import read_json_object, unlink_quietly, write_json_atomic
from team_bridge.bridge.layout import WorkdirLayout
from team_bridge.bridge.models import Heartbeat

logger = logging.getLogger(__name__)


class HeartbeatStore:
    """One heartbeat file per worker under the working directory; no history."""

    def __init__(self, working_directory: Path) -> None:
        self.layout = WorkdirLayout(working_directory)

    def write(self, heartbeat: Heartbeat) -> None:
        path = self.layout.heartbeat_path(heartbeat.team_name, heartbeat.worker_name)
        write_json_atomic(path, heartbeat.to_dict())

    def read(self, team_name: str, worker_name: str) -> Heartbeat | None:
        raw = read_json_object(self.layout.heartbeat_path(team_name, worker_name))
        if raw is None:
            return None
        try:
            return Heartbeat.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            return None

    def delete(self, team_name: str, worker_name: str) -> None:
        path = self.layout.heartbeat_path(team_name, worker_name)
        try:
            unlink_quietly(path)
        except OSError as error:
            logger.warning("Could not delete heartbeat %s: %s", path, error)
