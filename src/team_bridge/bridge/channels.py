"""JSONL inbox/outbox channels and shutdown signal files between lead and worker."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from team_bridge.bridge.fileio import (
    append_jsonl,
    read_json_object,
    unlink_quietly,
    write_json_atomic,
    write_text_atomic,
)
from team_bridge.bridge.layout import TeamLayout
from team_bridge.bridge.models import InboxMessage, OutboxMessage, ShutdownSignal

logger = logging.getLogger(__name__)


class ChannelStore:
    """File channels for one team root.

    Inbox (lead -> worker) is consumed incrementally through a byte-offset
    cursor stored next to it.  Outbox (worker -> lead) is append-only and
    trimmed from the front by :meth:`rotate_outbox`.
    """

    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    # --- Outbox (worker -> lead) ---

    def append_outbox(self, team_name: str, worker_name: str, message: OutboxMessage) -> None:
        append_jsonl(self.layout.outbox_path(team_name, worker_name), message.to_dict())

    def rotate_outbox(self, team_name: str, worker_name: str, max_lines: int) -> bool:
        """Keep only the newest ``max_lines // 2`` entries once over ``max_lines``.

        Trimming to half leaves headroom so rotation does not fire on every
        append after the threshold is first crossed.  Returns ``True`` when the
        file was rewritten.
        """

        path = self.layout.outbox_path(team_name, worker_name)
        try:
            content = path.read_text("utf-8")
        except FileNotFoundError:
            return False
        except OSError as error:
            logger.warning("Outbox rotation skipped for %s: %s", worker_name, error)
            return False

        lines = [line for line in content.split("\n") if line.strip()]
        if len(lines) <= max_lines:
            return False

        keep_count = max_lines // 2
        kept = lines[len(lines) - keep_count :]
        payload = "".join(f"{line}\n" for line in kept)
        try:
            write_text_atomic(path, payload)
        except OSError as error:
            logger.warning("Outbox rotation failed for %s: %s", worker_name, error)
            return False
        logger.info("Rotated outbox for %s: %d -> %d lines", worker_name, len(lines), len(kept))
        return True

    def read_outbox(
        self,
        team_name: str,
        worker_name: str,
        *,
        limit: int | None = None,
    ) -> list[OutboxMessage]:
        """Parse the outbox for the lead side, skipping unreadable entries."""

        path = self.layout.outbox_path(team_name, worker_name)
        messages: list[OutboxMessage] = []
        for raw in _read_jsonl_objects(path):
            try:
                messages.append(OutboxMessage.from_dict(raw))
            except ValueError:
                continue
        if limit is not None:
            return messages[-limit:] if limit > 0 else []
        return messages

    # --- Inbox (lead -> worker) ---

    def append_inbox(self, team_name: str, worker_name: str, message: InboxMessage) -> None:
        append_jsonl(self.layout.inbox_path(team_name, worker_name), message.to_dict())

    def read_new_inbox(self, team_name: str, worker_name: str) -> list[InboxMessage]:
        """Return inbox lines appended since the last call, in order, once each.

        1. Load the cursor (bytes already consumed, default 0).
        2. If the file shrank below the cursor it was truncated or replaced:
           start over from 0.
        3. Read exactly ``[cursor, size)`` and parse it line by line.
        4. Advance the cursor only past lines that parsed.  A malformed line
           (typically an append observed mid-write) stops the scan and is
           retried on the next call.
        """

        inbox = self.layout.inbox_path(team_name, worker_name)
        cursor_path = self.layout.inbox_cursor_path(team_name, worker_name)
        try:
            size = inbox.stat().st_size
        except FileNotFoundError:
            return []

        stored_offset = _load_cursor(cursor_path)
        offset = stored_offset
        if size < offset:
            logger.info(
                "Inbox for %s shrank below cursor (%d < %d), rereading from start",
                worker_name,
                size,
                offset,
            )
            offset = 0
        if size <= offset:
            if offset != stored_offset:
                _save_cursor(cursor_path, offset)
            return []

        with inbox.open("rb") as handle:
            handle.seek(offset)
            chunk = handle.read(size - offset)

        messages, consumed = _parse_complete_lines(chunk)
        new_offset = offset + consumed
        if new_offset != stored_offset:
            _save_cursor(cursor_path, new_offset)
        return messages

    def read_all_inbox(self, team_name: str, worker_name: str) -> list[InboxMessage]:
        """Full reread that ignores the cursor; malformed lines are skipped."""

        path = self.layout.inbox_path(team_name, worker_name)
        return [InboxMessage.from_dict(raw) for raw in _read_jsonl_objects(path)]

    def clear_inbox(self, team_name: str, worker_name: str) -> None:
        """Truncate the inbox and reset its cursor; safe to repeat."""

        inbox = self.layout.inbox_path(team_name, worker_name)
        cursor_path = self.layout.inbox_cursor_path(team_name, worker_name)
        if inbox.exists():
            inbox.write_text("", "utf-8")
        if cursor_path.exists():
            _save_cursor(cursor_path, 0)

    # --- Shutdown signals ---

    def write_shutdown_signal(
        self,
        team_name: str,
        worker_name: str,
        request_id: str,
        reason: str,
    ) -> ShutdownSignal:
        signal = ShutdownSignal(request_id=request_id, reason=reason)
        write_json_atomic(self.layout.signal_path(team_name, worker_name), signal.to_dict())
        return signal

    def check_shutdown_signal(self, team_name: str, worker_name: str) -> ShutdownSignal | None:
        raw = read_json_object(self.layout.signal_path(team_name, worker_name))
        if raw is None:
            return None
        try:
            return ShutdownSignal.from_dict(raw)
        except ValueError:
            return None

    def delete_shutdown_signal(self, team_name: str, worker_name: str) -> None:
        unlink_quietly(self.layout.signal_path(team_name, worker_name))

    # --- Cleanup ---

    def cleanup_worker(self, team_name: str, worker_name: str) -> list[Path]:
        """Remove every channel file of a decommissioned worker.

        Each removal is attempted independently; returns the paths removed.
        """

        removed: list[Path] = []
        for path in (
            self.layout.inbox_path(team_name, worker_name),
            self.layout.inbox_cursor_path(team_name, worker_name),
            self.layout.outbox_path(team_name, worker_name),
            self.layout.signal_path(team_name, worker_name),
        ):
            try:
                if unlink_quietly(path):
                    removed.append(path)
            except OSError as error:
                logger.warning("Could not remove %s: %s", path, error)
        return removed


def _parse_complete_lines(chunk: bytes) -> tuple[list[InboxMessage], int]:
    """Parse JSONL bytes; return messages and the byte count safely consumed."""

    messages: list[InboxMessage] = []
    consumed = 0
    position = 0
    while position < len(chunk):
        newline = chunk.find(b"\n", position)
        end = len(chunk) if newline == -1 else newline + 1
        line = chunk[position:end]
        position = end

        if not line.strip():
            if newline != -1:
                consumed = end
            continue
        try:
            payload = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            break
        if not isinstance(payload, dict):
            break
        messages.append(InboxMessage.from_dict(payload))
        consumed = end
    return messages, consumed


def _read_jsonl_objects(path: Path) -> list[dict[str, Any]]:
    try:
        content = path.read_text("utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as error:
        logger.warning("Could not read %s: %s", path, error)
        return []

    items: list[dict[str, Any]] = []
    for line in content.split("\n"):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            items.append(payload)
    return items


def _load_cursor(path: Path) -> int:
    raw = read_json_object(path)
    if raw is None:
        return 0
    value = raw.get("bytesRead")
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        return 0
    return value


def _save_cursor(path: Path, offset: int) -> None:
    write_json_atomic(path, {"bytesRead": offset})
