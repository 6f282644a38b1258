"""CLI entrypoint for team-bridge."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from team_bridge import __version__
from team_bridge.bridge.controllers import (
    BridgeCliController,
    HeartbeatShowCommand,
    InboxSendCommand,
    OutboxShowCommand,
    ShutdownCommand,
    TaskCreateCommand,
    TaskListCommand,
    TaskShowCommand,
    WorkerChannelCommand,
    WorkerRunCommand,
)
from team_bridge.bridge.errors import BridgeError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BridgeCliController()

_ROOT_HELP = "Storage root. Defaults to $TEAM_BRIDGE_ROOT or ~/.claude."


@click.group()
@click.version_option(version=__version__, prog_name="team-bridge")
def team_bridge() -> None:
    """File-based task bridge between a team lead and CLI worker daemons."""


@team_bridge.group()
def worker() -> None:
    """Worker daemon commands."""


@worker.command("run")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    required=True,
    help="JSON worker config (teamName, workerName, provider, workingDirectory).",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many poll cycles (default: run until shut down).",
)
def worker_run(config_path: Path, max_cycles: int | None) -> None:
    """Run the bridge daemon for one worker until it is shut down."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.run_worker(
                WorkerRunCommand(config_path=config_path, max_cycles=max_cycles),
            ),
        ),
    )


@team_bridge.group()
def task() -> None:
    """Task file commands for the lead."""


@task.command("create")
@click.argument("team_name")
@click.argument("task_id")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
@click.option("--subject", required=True, help="Short task title.")
@click.option("--description", default="", help="Full task description.")
@click.option("--owner", default=None, help="Worker that should execute the task.")
@click.option(
    "--blocked-by",
    "blocked_by",
    multiple=True,
    help="Task id that must be completed first. Can be repeated.",
)
@click.option(
    "--blocks",
    multiple=True,
    help="Task id this task blocks (informational). Can be repeated.",
)
def task_create(  # noqa: PLR0913
    team_name: str,
    task_id: str,
    root: Path | None,
    subject: str,
    description: str,
    owner: str | None,
    blocked_by: tuple[str, ...],
    blocks: tuple[str, ...],
) -> None:
    """Create a pending task file."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.create_task(
                TaskCreateCommand(
                    root=root,
                    team_name=team_name,
                    task_id=task_id,
                    subject=subject,
                    description=description,
                    owner=owner,
                    blocked_by=blocked_by,
                    blocks=blocks,
                ),
            ),
        ),
    )


@task.command("list")
@click.argument("team_name")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
@click.option(
    "--status",
    type=click.Choice(["pending", "in_progress", "completed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
def task_list(team_name: str, root: Path | None, status: str | None) -> None:
    """List tasks in claim order."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.list_tasks(
                TaskListCommand(
                    root=root,
                    team_name=team_name,
                    status=status.lower() if status else None,
                ),
            ),
        ),
    )


@task.command("show")
@click.argument("team_name")
@click.argument("task_id")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
def task_show(team_name: str, task_id: str, root: Path | None) -> None:
    """Show one task and its failure history."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.show_task(
                TaskShowCommand(root=root, team_name=team_name, task_id=task_id),
            ),
        ),
    )


@team_bridge.group()
def inbox() -> None:
    """Lead-to-worker messages."""


@inbox.command("send")
@click.argument("team_name")
@click.argument("worker_name")
@click.argument("message", required=False)
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
@click.option("--type", "message_type", default="message", show_default=True)
@click.option(
    "--file",
    "file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Send the content of this file instead of MESSAGE.",
)
@click.option(
    "--workdir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory --file must live in (default: current directory).",
)
def inbox_send(  # noqa: PLR0913
    team_name: str,
    worker_name: str,
    message: str | None,
    root: Path | None,
    message_type: str,
    file: Path | None,
    workdir: Path | None,
) -> None:
    """Append a message to a worker's inbox."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.send_inbox(
                InboxSendCommand(
                    root=root,
                    team_name=team_name,
                    worker_name=worker_name,
                    content=message,
                    message_type=message_type,
                    file=file,
                    workdir=workdir,
                ),
            ),
        ),
    )


@inbox.command("clear")
@click.argument("team_name")
@click.argument("worker_name")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
def inbox_clear(team_name: str, worker_name: str, root: Path | None) -> None:
    """Truncate a worker's inbox and reset its read cursor."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.clear_inbox(
                WorkerChannelCommand(root=root, team_name=team_name, worker_name=worker_name),
            ),
        ),
    )


@team_bridge.group()
def outbox() -> None:
    """Worker-to-lead events."""


@outbox.command("show")
@click.argument("team_name")
@click.argument("worker_name")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Only print the newest N events.",
)
def outbox_show(team_name: str, worker_name: str, root: Path | None, limit: int | None) -> None:
    """Print outbox events as JSON lines."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.show_outbox(
                OutboxShowCommand(
                    root=root,
                    team_name=team_name,
                    worker_name=worker_name,
                    limit=limit,
                ),
            ),
        ),
    )


@team_bridge.command("shutdown")
@click.argument("team_name")
@click.argument("worker_name")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
@click.option("--reason", default="Requested by lead", show_default=True)
@click.option("--request-id", default=None, help="Request id echoed in shutdown_ack.")
def shutdown(
    team_name: str,
    worker_name: str,
    root: Path | None,
    reason: str,
    request_id: str | None,
) -> None:
    """Ask a worker daemon to shut down."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.request_shutdown(
                ShutdownCommand(
                    root=root,
                    team_name=team_name,
                    worker_name=worker_name,
                    reason=reason,
                    request_id=request_id,
                ),
            ),
        ),
    )


@team_bridge.command("heartbeat")
@click.argument("workdir", type=click.Path(path_type=Path, file_okay=False))
@click.argument("team_name")
@click.argument("worker_name")
def heartbeat(workdir: Path, team_name: str, worker_name: str) -> None:
    """Show a worker's latest heartbeat."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.show_heartbeat(
                HeartbeatShowCommand(
                    working_directory=workdir,
                    team_name=team_name,
                    worker_name=worker_name,
                ),
            ),
        ),
    )


@team_bridge.command("cleanup")
@click.argument("team_name")
@click.argument("worker_name")
@click.option("--root", type=click.Path(path_type=Path), default=None, help=_ROOT_HELP)
def cleanup(team_name: str, worker_name: str, root: Path | None) -> None:
    """Remove a decommissioned worker's inbox, cursor, outbox and signal files."""

    _emit_lines(
        _call(
            lambda: CONTROLLER.cleanup(
                WorkerChannelCommand(root=root, team_name=team_name, worker_name=worker_name),
            ),
        ),
    )


def _call(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (BridgeError, ValueError, FileExistsError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    team_bridge()
