"""Shared test fixtures."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest

from team_bridge.bridge.channels import ChannelStore
from team_bridge.bridge.daemon import BridgeDaemon
from team_bridge.bridge.executor import CliExecutor, ExecutorKind
from team_bridge.bridge.heartbeat import HeartbeatStore
from team_bridge.bridge.layout import TeamLayout
from team_bridge.bridge.models import Task, TaskStatus
from team_bridge.bridge.roster import TeamRoster
from team_bridge.bridge.task_store import TaskStore
from team_bridge.config import BridgeConfig

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
ECHO_AGENT_PREFIX = [sys.executable, "-m", "team_bridge.bridge.executor.echo_agent"]

TEAM = "alpha"
WORKER = "w1"


class RecordingSession:
    """Host session stand-in that remembers terminate calls."""

    def __init__(self) -> None:
        self.terminated: list[tuple[str, str]] = []

    def terminate(self, team_name: str, worker_name: str) -> None:
        self.terminated.append((team_name, worker_name))


@pytest.fixture()
def echo_agent_env(monkeypatch):
    """Make the echo agent importable from spawned interpreters."""

    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}",
    )
    return ECHO_AGENT_PREFIX


@pytest.fixture()
def root_dir(tmp_path: Path) -> Path:
    return tmp_path / "root"


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def layout(root_dir: Path) -> TeamLayout:
    return TeamLayout(root_dir)


@pytest.fixture()
def task_store(layout: TeamLayout) -> TaskStore:
    return TaskStore(layout)


@pytest.fixture()
def channels(layout: TeamLayout) -> ChannelStore:
    return ChannelStore(layout)


@pytest.fixture()
def make_config(root_dir: Path, workdir: Path):
    def _make(**overrides) -> BridgeConfig:
        values = {
            "team_name": TEAM,
            "worker_name": WORKER,
            "provider": ExecutorKind.GEMINI,
            "working_directory": workdir,
            "poll_interval_ms": 10,
            "task_timeout_ms": 20_000,
            "root": root_dir,
            "command_prefixes": {
                ExecutorKind.CODEX: ECHO_AGENT_PREFIX,
                ExecutorKind.GEMINI: ECHO_AGENT_PREFIX,
            },
        }
        values.update(overrides)
        return BridgeConfig(**values)

    return _make


@pytest.fixture()
def make_daemon(echo_agent_env, make_config, layout, task_store, channels, workdir):
    def _make(config: BridgeConfig | None = None, **overrides):
        config = config or make_config(**overrides)
        session = RecordingSession()
        daemon = BridgeDaemon(
            config,
            task_store=task_store,
            channels=channels,
            heartbeats=HeartbeatStore(workdir),
            roster=TeamRoster(layout),
            executor=CliExecutor(command_prefixes=config.command_prefixes),
            session=session,
        )
        return daemon, session

    return _make


@pytest.fixture()
def add_task(task_store: TaskStore):
    def _add(task_id: str, description: str = "", **fields) -> Task:
        fields.setdefault("owner", WORKER)
        fields.setdefault("subject", f"Task {task_id}")
        fields.setdefault("status", TaskStatus.PENDING)
        return task_store.create(TEAM, Task(id=task_id, description=description, **fields))

    return _add


@pytest.fixture()
def restore_logging():
    """Undo root logger changes made by ``setup_logging``."""

    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)
