"""Deterministic on-disk layout for team tasks, channels and worker state."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from team_bridge.bridge.naming import sanitize_name, sanitize_task_id

DEFAULT_ROOT = Path.home() / ".claude"
STATE_DIRNAME = ".omc"


@dataclass(slots=True, frozen=True)
class TeamLayout:
    """Paths shared by the lead and every worker of any team under ``root``."""

    root: Path = DEFAULT_ROOT

    def tasks_dir(self, team_name: str) -> Path:
        return self.root / "tasks" / sanitize_name(team_name)

    def task_path(self, team_name: str, task_id: str) -> Path:
        return self.tasks_dir(team_name) / f"{sanitize_task_id(task_id)}.json"

    def failure_path(self, team_name: str, task_id: str) -> Path:
        return self.tasks_dir(team_name) / f"{sanitize_task_id(task_id)}.failure.json"

    def team_dir(self, team_name: str) -> Path:
        return self.root / "teams" / sanitize_name(team_name)

    def team_config_path(self, team_name: str) -> Path:
        return self.team_dir(team_name) / "config.json"

    def inbox_path(self, team_name: str, worker_name: str) -> Path:
        return self.team_dir(team_name) / "inbox" / f"{sanitize_name(worker_name)}.jsonl"

    def inbox_cursor_path(self, team_name: str, worker_name: str) -> Path:
        return self.team_dir(team_name) / "inbox" / f"{sanitize_name(worker_name)}.offset"

    def outbox_path(self, team_name: str, worker_name: str) -> Path:
        return self.team_dir(team_name) / "outbox" / f"{sanitize_name(worker_name)}.jsonl"

    def signal_path(self, team_name: str, worker_name: str) -> Path:
        return self.team_dir(team_name) / "signals" / f"{sanitize_name(worker_name)}.shutdown"


@dataclass(slots=True, frozen=True)
class WorkdirLayout:
    """Per-project paths under a worker's working directory."""

    working_directory: Path

    @property
    def state_dir(self) -> Path:
        return self.working_directory / STATE_DIRNAME / "state"

    def heartbeat_path(self, team_name: str, worker_name: str) -> Path:
        return (
            self.state_dir
            / "team-bridge"
            / sanitize_name(team_name)
            / f"{sanitize_name(worker_name)}.heartbeat.json"
        )

    def shadow_registry_path(self) -> Path:
        return self.state_dir / "team-mcp-workers.json"

    @property
    def prompts_dir(self) -> Path:
        return self.working_directory / STATE_DIRNAME / "prompts"

    @property
    def outputs_dir(self) -> Path:
        return self.working_directory / STATE_DIRNAME / "outputs"
