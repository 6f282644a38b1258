"""Durable JSON file helpers shared by the bridge stores."""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def temp_path_for(path: Path) -> Path:
    """Sibling temp path unique to this writer (pid + random suffix)."""

    return path.with_name(f"{path.name}.tmp.{os.getpid()}.{uuid.uuid4().hex[:8]}")


def write_text_atomic(path: Path, payload: str) -> None:
    """Write full content to a temp sibling, then rename over ``path``.

    Readers see either the previous file or the complete new one.
    """

    ensure_parent(path)
    tmp = temp_path_for(path)
    try:
        with tmp.open("w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def write_json_atomic(path: Path, data: Any) -> None:
    write_text_atomic(path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")


def write_json_exclusive(path: Path, data: Any) -> None:
    """Publish a complete JSON file at ``path`` only if nothing is there yet.

    The content is staged in a temp sibling and hard-linked into place, so a
    concurrent creator of the same path gets ``FileExistsError`` instead of
    silently overwriting, and readers never see a partial file.
    """

    ensure_parent(path)
    tmp = temp_path_for(path)
    try:
        with tmp.open("w", encoding="utf-8") as handle:
            handle.write(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.link(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def read_json_object(path: Path) -> dict[str, Any] | None:
    """Load a JSON object, treating absence and corruption alike as ``None``."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def append_jsonl(path: Path, item: Any) -> None:
    ensure_parent(path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(item, ensure_ascii=False) + "\n")


def unlink_quietly(path: Path) -> bool:
    """Remove ``path`` if present; a concurrent deleter is not an error."""

    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
