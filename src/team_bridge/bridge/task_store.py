"""File-backed task store: one JSON file per task plus failure sidecars."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from team_bridge.bridge.errors import InvalidNameError, TaskNotFoundError
from team_bridge.bridge.fileio import read_json_object, write_json_atomic, write_json_exclusive
from team_bridge.bridge.layout import TeamLayout
from team_bridge.bridge.models import (
    FailureSidecar,
    Task,
    TaskStatus,
    TaskUpdate,
    utc_now_iso,
)
from team_bridge.bridge.naming import sanitize_task_id

logger = logging.getLogger(__name__)

_NUMERIC_ID = re.compile(r"\d+")


class TaskStore:
    """Reads, patches and scans task files for a team.

    Every write goes through temp file + rename.  No locks are taken: readers
    are always safe, and concurrent writers to the same task race
    last-write-wins.
    """

    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    def read(self, team_name: str, task_id: str) -> Task | None:
        """Return the task, or ``None`` if it is missing or malformed."""

        raw = read_json_object(self.layout.task_path(team_name, task_id))
        if raw is None:
            return None
        try:
            return Task.from_dict(raw)
        except ValueError:
            logger.debug("Ignoring malformed task file %s/%s", team_name, task_id)
            return None

    def create(self, team_name: str, task: Task) -> Task:
        """Persist a new task; refuses to overwrite an existing file."""

        path = self.layout.task_path(team_name, task.id)
        try:
            write_json_exclusive(path, task.to_dict())
        except FileExistsError:
            raise FileExistsError(f"Task already exists: {task.id}") from None
        return task

    def update(self, team_name: str, task_id: str, update: TaskUpdate) -> None:
        """Merge explicitly set fields into the stored task.

        The task must already exist: a missing or unparsable file raises
        ``TaskNotFoundError`` rather than being recreated.
        """

        path = self.layout.task_path(team_name, task_id)
        current = read_json_object(path)
        if current is None:
            raise TaskNotFoundError(team_name, task_id)
        current.update(update.to_patch())
        write_json_atomic(path, current)

    def list_ids(self, team_name: str) -> list[str]:
        """Task ids in claim order: numeric ids by value, then the rest lexically."""

        tasks_dir = self.layout.tasks_dir(team_name)
        if not tasks_dir.is_dir():
            return []
        ids: list[str] = []
        for entry in tasks_dir.iterdir():
            name = entry.name
            if not name.endswith(".json") or ".tmp." in name or ".failure." in name:
                continue
            task_id = name[: -len(".json")]
            try:
                sanitize_task_id(task_id)
            except InvalidNameError:
                logger.debug("Skipping task file with unsafe name: %s", name)
                continue
            ids.append(task_id)
        return sorted(ids, key=_task_id_sort_key)

    def list_tasks(self, team_name: str) -> list[Task]:
        tasks = (self.read(team_name, task_id) for task_id in self.list_ids(team_name))
        return [task for task in tasks if task is not None]

    def find_next(self, team_name: str, worker_name: str) -> Task | None:
        """First pending task owned by ``worker_name`` whose blockers are completed.

        The candidate is re-read before it is returned and dropped if its owner
        or status moved in the meantime.  This narrows the scan-then-claim race
        but does not close it: two daemons polling for the same owner can
        still both see the same task.
        """

        for task_id in self.list_ids(team_name):
            task = self.read(team_name, task_id)
            if task is None or not _is_claimable(task, worker_name):
                continue
            if not self.blockers_resolved(team_name, task.blocked_by):
                continue

            fresh = self.read(team_name, task_id)
            if fresh is None or not _is_claimable(fresh, worker_name):
                logger.debug("Task %s changed between scan and claim, skipping", task_id)
                continue
            return fresh
        return None

    def blockers_resolved(self, team_name: str, blocked_by: Iterable[str]) -> bool:
        for blocker_id in blocked_by:
            try:
                blocker = self.read(team_name, blocker_id)
            except InvalidNameError:
                return False
            if blocker is None or blocker.status != TaskStatus.COMPLETED:
                return False
        return True

    def record_failure(self, team_name: str, task_id: str, error: str) -> FailureSidecar:
        """Upsert the failure sidecar, bumping its retry counter."""

        existing = self.read_failure(team_name, task_id)
        sidecar = FailureSidecar(
            task_id=task_id,
            last_error=error,
            retry_count=existing.retry_count + 1 if existing is not None else 1,
            last_failed_at=utc_now_iso(),
        )
        write_json_atomic(self.layout.failure_path(team_name, task_id), sidecar.to_dict())
        return sidecar

    def read_failure(self, team_name: str, task_id: str) -> FailureSidecar | None:
        raw = read_json_object(self.layout.failure_path(team_name, task_id))
        if raw is None:
            return None
        try:
            return FailureSidecar.from_dict(raw)
        except ValueError:
            return None


def _is_claimable(task: Task, worker_name: str) -> bool:
    return task.status == TaskStatus.PENDING and task.owner == worker_name


def _task_id_sort_key(task_id: str) -> tuple[int, int, str]:
    # A total order, so claim order never depends on directory listing order.
    if _NUMERIC_ID.fullmatch(task_id):
        return (0, int(task_id), task_id)
    return (1, 0, task_id)
