from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from team_bridge.bridge.fileio import (
    append_jsonl,
    read_json_object,
    temp_path_for,
    unlink_quietly,
    write_json_atomic,
    write_json_exclusive,
)

pytestmark = [
    allure.epic("Team Bridge"),
    allure.feature("Durable Files"),
]


def test_write_json_atomic_creates_parents_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "dir" / "record.json"

    write_json_atomic(target, {"a": 1})
    write_json_atomic(target, {"a": 2})

    assert json.loads(target.read_text("utf-8")) == {"a": 2}
    assert [entry.name for entry in target.parent.iterdir()] == ["record.json"]


def test_temp_path_is_unique_per_call(tmp_path: Path) -> None:
    target = tmp_path / "x.json"

    first = temp_path_for(target)
    second = temp_path_for(target)

    assert first != second
    assert first.parent == tmp_path
    assert first.name.startswith("x.json.tmp.")


def test_read_json_object_treats_missing_and_corrupt_files_as_absent(tmp_path: Path) -> None:
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json", "utf-8")
    array = tmp_path / "array.json"
    array.write_text("[1, 2]", "utf-8")

    assert read_json_object(tmp_path / "missing.json") is None
    assert read_json_object(corrupt) is None
    assert read_json_object(array) is None


def test_append_jsonl_appends_one_line_per_item(tmp_path: Path) -> None:
    target = tmp_path / "log" / "events.jsonl"

    append_jsonl(target, {"n": 1})
    append_jsonl(target, {"n": 2})

    lines = target.read_text("utf-8").splitlines()
    assert [json.loads(line) for line in lines] == [{"n": 1}, {"n": 2}]


def test_unlink_quietly_tolerates_missing_file(tmp_path: Path) -> None:
    target = tmp_path / "gone.txt"
    target.write_text("x", "utf-8")

    assert unlink_quietly(target) is True
    assert unlink_quietly(target) is False


def test_write_json_exclusive_never_replaces_existing_file(tmp_path: Path) -> None:
    target = tmp_path / "tasks" / "1.json"

    write_json_exclusive(target, {"subject": "first"})
    with pytest.raises(FileExistsError):
        write_json_exclusive(target, {"subject": "second"})

    assert read_json_object(target) == {"subject": "first"}
    assert [path.name for path in target.parent.iterdir()] == ["1.json"]
