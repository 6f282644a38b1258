"""Controllers for team-bridge CLI commands."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

from team_bridge.bridge.channels import ChannelStore
from team_bridge.bridge.daemon import BridgeDaemon
from team_bridge.bridge.errors import TaskNotFoundError
from team_bridge.bridge.executor import CliExecutor
from team_bridge.bridge.heartbeat import HeartbeatStore
from team_bridge.bridge.layout import TeamLayout
from team_bridge.bridge.models import InboxMessage, Task, TaskStatus
from team_bridge.bridge.naming import sanitize_name, sanitize_task_id
from team_bridge.bridge.prompts import read_prompt_file
from team_bridge.bridge.roster import TeamRoster
from team_bridge.bridge.session import DetachedSession, HostSession, TmuxSession
from team_bridge.bridge.task_store import TaskStore
from team_bridge.config import BridgeConfig, PolicySettings, resolve_root
from team_bridge.logging_setup import setup_logging


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for starting a worker daemon."""

    config_path: Path
    max_cycles: int | None = None


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for enqueueing a task."""

    root: Path | None
    team_name: str
    task_id: str
    subject: str
    description: str
    owner: str | None
    blocked_by: tuple[str, ...] = ()
    blocks: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskListCommand:
    root: Path | None
    team_name: str
    status: str | None = None


@dataclass(slots=True)
class TaskShowCommand:
    root: Path | None
    team_name: str
    task_id: str


@dataclass(slots=True)
class InboxSendCommand:
    """CLI input for a lead-to-worker message; ``file`` is read under ``workdir``."""

    root: Path | None
    team_name: str
    worker_name: str
    content: str | None
    message_type: str = "message"
    file: Path | None = None
    workdir: Path | None = None


@dataclass(slots=True)
class WorkerChannelCommand:
    """CLI input addressing one worker's channel files."""

    root: Path | None
    team_name: str
    worker_name: str


@dataclass(slots=True)
class OutboxShowCommand:
    root: Path | None
    team_name: str
    worker_name: str
    limit: int | None = None


@dataclass(slots=True)
class ShutdownCommand:
    root: Path | None
    team_name: str
    worker_name: str
    reason: str
    request_id: str | None = None


@dataclass(slots=True)
class HeartbeatShowCommand:
    working_directory: Path
    team_name: str
    worker_name: str


class BridgeCliController:
    """Worker startup and lead-side file operations for the CLI."""

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        config = BridgeConfig.from_file(command.config_path)
        log_file = setup_logging(
            log_dir=config.effective_log_dir,
            log_name=f"{sanitize_name(config.team_name)}-{sanitize_name(config.worker_name)}.log",
        )
        layout = TeamLayout(config.root)
        daemon = BridgeDaemon(
            config,
            task_store=TaskStore(layout),
            channels=ChannelStore(layout),
            heartbeats=HeartbeatStore(config.working_directory),
            roster=TeamRoster(layout),
            executor=CliExecutor(command_prefixes=config.command_prefixes),
            session=_host_session(),
        )
        summary = daemon.run(max_cycles=command.max_cycles)

        lines = [
            "Worker summary: "
            f"worker={config.worker_name} team={config.team_name} cycles={summary.cycles} "
            f"completed={summary.completed} failed={summary.failed} errors={summary.errors}",
        ]
        if summary.shutdown_request_id is not None:
            lines.append(f"Shutdown acknowledged: request_id={summary.shutdown_request_id}")
        if summary.stop_signal is not None:
            lines.append(f"Stopped by {summary.stop_signal}")
        if log_file is not None:
            lines.append(f"Log: {log_file}")
        return lines

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        store = TaskStore(_layout(command.root))
        task = store.create(
            command.team_name,
            Task(
                id=sanitize_task_id(command.task_id),
                subject=command.subject,
                description=command.description,
                status=TaskStatus.PENDING,
                owner=command.owner,
                blocks=list(command.blocks),
                blocked_by=list(command.blocked_by),
            ),
        )
        return [
            f"Task created: task_id={task.id} team={command.team_name} "
            f"owner={task.owner or '-'} status={TaskStatus.PENDING.value}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        tasks = TaskStore(_layout(command.root)).list_tasks(command.team_name)
        if command.status is not None:
            tasks = [task for task in tasks if _status_value(task) == command.status]
        if not tasks:
            return ["No tasks found."]
        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            blocked = f" blocked_by={','.join(task.blocked_by)}" if task.blocked_by else ""
            lines.append(
                f"- {task.id} status={_status_value(task)} owner={task.owner or '-'}"
                f"{blocked} subject={task.subject!r}",
            )
        return lines

    def show_task(self, command: TaskShowCommand) -> list[str]:
        store = TaskStore(_layout(command.root))
        task = store.read(command.team_name, command.task_id)
        if task is None:
            raise TaskNotFoundError(command.team_name, command.task_id)
        payload = task.to_dict()
        failure = store.read_failure(command.team_name, command.task_id)
        lines = json.dumps(payload, ensure_ascii=False, indent=2).splitlines()
        if failure is not None:
            lines.append(
                f"Failures: retry_count={failure.retry_count} "
                f"last_failed_at={failure.last_failed_at}",
            )
            lines.append(f"Last error: {failure.last_error}")
        return lines

    def send_inbox(self, command: InboxSendCommand) -> list[str]:
        if command.file is not None:
            content = read_prompt_file(
                command.file,
                command.workdir or Path.cwd(),
                PolicySettings.from_env(),
            )
        elif command.content is not None:
            content = command.content
        else:
            raise ValueError("Either a message or --file is required.")

        ChannelStore(_layout(command.root)).append_inbox(
            command.team_name,
            command.worker_name,
            InboxMessage(type=command.message_type, content=content),
        )
        return [
            f"Message queued for {command.worker_name}@{command.team_name}: "
            f"type={command.message_type} chars={len(content)}",
        ]

    def clear_inbox(self, command: WorkerChannelCommand) -> list[str]:
        ChannelStore(_layout(command.root)).clear_inbox(command.team_name, command.worker_name)
        return [f"Inbox cleared for {command.worker_name}@{command.team_name}"]

    def show_outbox(self, command: OutboxShowCommand) -> list[str]:
        messages = ChannelStore(_layout(command.root)).read_outbox(
            command.team_name,
            command.worker_name,
            limit=command.limit,
        )
        if not messages:
            return ["Outbox is empty."]
        return [json.dumps(message.to_dict(), ensure_ascii=False) for message in messages]

    def request_shutdown(self, command: ShutdownCommand) -> list[str]:
        request_id = command.request_id or uuid.uuid4().hex
        ChannelStore(_layout(command.root)).write_shutdown_signal(
            command.team_name,
            command.worker_name,
            request_id,
            command.reason,
        )
        return [
            f"Shutdown requested for {command.worker_name}@{command.team_name}: "
            f"request_id={request_id}",
        ]

    def show_heartbeat(self, command: HeartbeatShowCommand) -> list[str]:
        heartbeat = HeartbeatStore(command.working_directory).read(
            command.team_name,
            command.worker_name,
        )
        if heartbeat is None:
            return [f"No heartbeat for {command.worker_name}@{command.team_name}."]
        return [
            f"Worker: {heartbeat.worker_name}@{heartbeat.team_name} "
            f"provider={heartbeat.provider} pid={heartbeat.pid}",
            f"Status: {heartbeat.status.value} task={heartbeat.current_task_id or '-'} "
            f"consecutive_errors={heartbeat.consecutive_errors}",
            f"Last poll: {heartbeat.last_poll_at}",
        ]

    def cleanup(self, command: WorkerChannelCommand) -> list[str]:
        removed = ChannelStore(_layout(command.root)).cleanup_worker(
            command.team_name,
            command.worker_name,
        )
        lines = [f"Removed {len(removed)} file(s) for {command.worker_name}@{command.team_name}"]
        lines.extend(f"- {path}" for path in removed)
        return lines


def _layout(root: Path | None) -> TeamLayout:
    return TeamLayout(resolve_root(root))


def _host_session() -> HostSession:
    if os.environ.get("TMUX"):
        return TmuxSession()
    return DetachedSession()


def _status_value(task: Task) -> str:
    return task.status.value if isinstance(task.status, TaskStatus) else str(task.status)
