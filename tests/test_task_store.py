from __future__ import annotations

import itertools
import json
import os

import allure
import pytest

from team_bridge.bridge.errors import TaskNotFoundError
from team_bridge.bridge.models import Task, TaskStatus, TaskUpdate
from team_bridge.bridge.task_store import TaskStore, _task_id_sort_key

TEAM = "alpha"
WORKER = "w1"

pytestmark = [
    allure.epic("Team Bridge"),
    allure.feature("Task Store"),
]


def test_create_then_read_round_trip(task_store: TaskStore, add_task) -> None:
    add_task("1", "Do the thing", blocked_by=["0"], blocks=["2"])

    task = task_store.read(TEAM, "1")

    assert task is not None
    assert task.description == "Do the thing"
    assert task.status == TaskStatus.PENDING
    assert task.owner == WORKER
    assert task.blocked_by == ["0"]
    assert task.blocks == ["2"]
    raw = json.loads(task_store.layout.task_path(TEAM, "1").read_text("utf-8"))
    assert raw["blockedBy"] == ["0"]


def test_create_refuses_to_overwrite(task_store: TaskStore, add_task) -> None:
    add_task("1")

    with pytest.raises(FileExistsError):
        task_store.create(TEAM, Task(id="1", subject="again"))


def test_create_loses_race_to_concurrent_creator(
    task_store: TaskStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    path = task_store.layout.task_path(TEAM, "1")
    real_fsync = os.fsync

    def competitor_wins(fd: int) -> None:
        real_fsync(fd)
        if not path.exists():
            path.write_text(json.dumps({"id": "1", "subject": "first"}), "utf-8")

    monkeypatch.setattr(os, "fsync", competitor_wins)

    with pytest.raises(FileExistsError, match="Task already exists: 1"):
        task_store.create(TEAM, Task(id="1", subject="second"))

    task = task_store.read(TEAM, "1")
    assert task is not None
    assert task.subject == "first"
    assert sorted(p.name for p in path.parent.iterdir()) == ["1.json"]


def test_read_returns_none_for_missing_or_malformed(task_store: TaskStore) -> None:
    path = task_store.layout.task_path(TEAM, "bad")
    path.parent.mkdir(parents=True)
    path.write_text("{broken", "utf-8")

    assert task_store.read(TEAM, "bad") is None
    assert task_store.read(TEAM, "missing") is None


def test_update_merges_patch_and_preserves_unknown_fields(task_store: TaskStore) -> None:
    path = task_store.layout.task_path(TEAM, "5")
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps(
            {
                "id": "5",
                "subject": "Keep me",
                "description": "desc",
                "status": "pending",
                "owner": WORKER,
                "blocks": [],
                "blockedBy": [],
                "metadata": {"priority": "high"},
                "activeForm": "Working",
            },
        ),
        "utf-8",
    )

    task_store.update(TEAM, "5", TaskUpdate(status=TaskStatus.IN_PROGRESS))

    raw = json.loads(path.read_text("utf-8"))
    assert raw["status"] == "in_progress"
    assert raw["subject"] == "Keep me"
    assert raw["owner"] == WORKER
    assert raw["metadata"] == {"priority": "high"}
    assert raw["activeForm"] == "Working"


def test_update_missing_or_malformed_task_raises(task_store: TaskStore) -> None:
    with pytest.raises(TaskNotFoundError, match="missing"):
        task_store.update(TEAM, "missing", TaskUpdate(status=TaskStatus.PENDING))

    path = task_store.layout.task_path(TEAM, "broken")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("not json", "utf-8")
    with pytest.raises(TaskNotFoundError):
        task_store.update(TEAM, "broken", TaskUpdate(status=TaskStatus.PENDING))
    assert path.read_text("utf-8") == "not json"


def test_list_ids_sorts_numeric_ids_by_value(task_store: TaskStore, add_task) -> None:
    for task_id in ("10", "2", "1"):
        add_task(task_id)

    assert task_store.list_ids(TEAM) == ["1", "2", "10"]


def test_list_ids_sorts_other_ids_lexically(task_store: TaskStore, add_task) -> None:
    for task_id in ("beta", "alpha", "Zed"):
        add_task(task_id)

    assert task_store.list_ids(TEAM) == ["Zed", "alpha", "beta"]


@pytest.mark.parametrize("ids", list(itertools.permutations(["1a", "10", "9", "b"])))
def test_mixed_id_order_is_independent_of_input_order(ids: tuple[str, ...]) -> None:
    assert sorted(ids, key=_task_id_sort_key) == ["9", "10", "1a", "b"]


def test_list_ids_puts_numeric_ids_before_other_ids(task_store: TaskStore, add_task) -> None:
    for task_id in ("1a", "10", "9"):
        add_task(task_id)

    assert task_store.list_ids(TEAM) == ["9", "10", "1a"]


def test_list_ids_skips_temp_sidecar_and_unsafe_files(task_store: TaskStore, add_task) -> None:
    add_task("1")
    task_store.record_failure(TEAM, "1", "boom")
    tasks_dir = task_store.layout.tasks_dir(TEAM)
    (tasks_dir / "2.json.tmp.123.abcd").write_text("{}", "utf-8")
    (tasks_dir / "3.tmp.json").write_text("{}", "utf-8")
    (tasks_dir / "bad id.json").write_text("{}", "utf-8")
    (tasks_dir / "notes.txt").write_text("x", "utf-8")

    assert task_store.list_ids(TEAM) == ["1"]


def test_list_ids_for_unknown_team_is_empty(task_store: TaskStore) -> None:
    assert task_store.list_ids("nobody") == []


def test_find_next_only_returns_eligible_tasks(task_store: TaskStore, add_task) -> None:
    add_task("1", owner="someone-else")
    add_task("2", status=TaskStatus.IN_PROGRESS)
    add_task("3", status=TaskStatus.COMPLETED)
    add_task("4", blocked_by=["99"])
    add_task("5")

    task = task_store.find_next(TEAM, WORKER)

    assert task is not None
    assert task.id == "5"


def test_find_next_returns_none_when_nothing_is_eligible(task_store: TaskStore, add_task) -> None:
    add_task("1", owner="someone-else")

    assert task_store.find_next(TEAM, WORKER) is None


def test_blocked_task_becomes_eligible_after_blocker_completes(
    task_store: TaskStore,
    add_task,
) -> None:
    add_task("1", owner="other")
    add_task("2", blocked_by=["1"])

    assert task_store.find_next(TEAM, WORKER) is None

    task_store.update(TEAM, "1", TaskUpdate(status=TaskStatus.COMPLETED))
    task = task_store.find_next(TEAM, WORKER)

    assert task is not None
    assert task.id == "2"


def test_blockers_resolved_treats_unsafe_blocker_id_as_unresolved(task_store: TaskStore) -> None:
    assert task_store.blockers_resolved(TEAM, []) is True
    assert task_store.blockers_resolved(TEAM, ["../x"]) is False


def test_find_next_skips_candidate_that_changed_before_claim(
    task_store: TaskStore,
    add_task,
    monkeypatch,
) -> None:
    add_task("1")
    add_task("2")
    original_read = task_store.read
    reads: list[str] = []

    def racing_read(team_name: str, task_id: str) -> Task | None:
        reads.append(task_id)
        if task_id == "1" and reads.count("1") == 2:
            task_store.update(team_name, "1", TaskUpdate(owner="w2"))
        return original_read(team_name, task_id)

    monkeypatch.setattr(task_store, "read", racing_read)

    task = task_store.find_next(TEAM, WORKER)

    assert task is not None
    assert task.id == "2"


def test_record_failure_counts_retries(task_store: TaskStore, add_task) -> None:
    add_task("1")

    assert task_store.read_failure(TEAM, "1") is None
    counts = [task_store.record_failure(TEAM, "1", f"error {n}").retry_count for n in range(3)]

    assert counts == [1, 2, 3]
    sidecar = task_store.read_failure(TEAM, "1")
    assert sidecar is not None
    assert sidecar.task_id == "1"
    assert sidecar.last_error == "error 2"
    assert sidecar.last_failed_at.endswith("Z")
    task = task_store.read(TEAM, "1")
    assert task is not None
    assert task.status == TaskStatus.PENDING


def test_list_tasks_skips_unparsable_files(task_store: TaskStore, add_task) -> None:
    add_task("1")
    task_store.layout.task_path(TEAM, "2").write_text("[]", "utf-8")

    assert [task.id for task in task_store.list_tasks(TEAM)] == ["1"]
