"""Domain records persisted by the bridge as JSON files."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TaskStatus(str, Enum):
    """Task lifecycle states shared with the lead."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class WorkerStatus(str, Enum):
    """Daemon states mirrored into the heartbeat."""

    POLLING = "polling"
    EXECUTING = "executing"
    QUARANTINED = "quarantined"


class OutboxEventType(str, Enum):
    """Lifecycle events a worker reports to the lead."""

    IDLE = "idle"
    TASK_COMPLETE = "task_complete"
    TASK_FAILED = "task_failed"
    ERROR = "error"
    SHUTDOWN_ACK = "shutdown_ack"


_TASK_KEYS = ("id", "subject", "description", "status", "owner", "blocks", "blockedBy")


def _parse_status(value: object) -> TaskStatus | str:
    raw = str(value) if value is not None else TaskStatus.PENDING.value
    try:
        return TaskStatus(raw)
    except ValueError:
        return raw


def _str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


@dataclass(slots=True)
class Task:
    """One unit of work in a team's task graph.

    ``extra`` carries keys this daemon does not know about so that they
    survive a read-modify-write cycle.
    """

    id: str
    subject: str = ""
    description: str = ""
    status: TaskStatus | str = TaskStatus.PENDING
    owner: str | None = None
    blocks: list[str] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Task:
        task_id = raw.get("id")
        if not isinstance(task_id, str | int) or isinstance(task_id, bool):
            raise ValueError("task.id must be a string")
        owner = raw.get("owner")
        return cls(
            id=str(task_id),
            subject=str(raw.get("subject") or ""),
            description=str(raw.get("description") or ""),
            status=_parse_status(raw.get("status")),
            owner=str(owner) if owner is not None else None,
            blocks=_str_list(raw.get("blocks")),
            blocked_by=_str_list(raw.get("blockedBy")),
            extra={key: value for key, value in raw.items() if key not in _TASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "id": self.id,
                "subject": self.subject,
                "description": self.description,
                "status": _enum_value(self.status),
                "blocks": list(self.blocks),
                "blockedBy": list(self.blocked_by),
            },
        )
        if self.owner is not None:
            payload["owner"] = self.owner
        return payload


@dataclass(slots=True)
class TaskUpdate:
    """Partial task patch; ``None`` means "leave this field alone"."""

    subject: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    owner: str | None = None
    blocks: list[str] | None = None
    blocked_by: list[str] | None = None

    def to_patch(self) -> dict[str, Any]:
        values = {
            "subject": self.subject,
            "description": self.description,
            "status": _enum_value(self.status) if self.status is not None else None,
            "owner": self.owner,
            "blocks": self.blocks,
            "blockedBy": self.blocked_by,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass(slots=True)
class FailureSidecar:
    """Failure history kept next to a task without touching the task record."""

    task_id: str
    last_error: str
    retry_count: int
    last_failed_at: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FailureSidecar:
        retry_count = raw.get("retryCount")
        if not isinstance(retry_count, int) or isinstance(retry_count, bool):
            raise ValueError("failure.retryCount must be an integer")
        return cls(
            task_id=str(raw.get("taskId", "")),
            last_error=str(raw.get("lastError", "")),
            retry_count=retry_count,
            last_failed_at=str(raw.get("lastFailedAt", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "lastError": self.last_error,
            "retryCount": self.retry_count,
            "lastFailedAt": self.last_failed_at,
        }


@dataclass(slots=True)
class InboxMessage:
    """Lead-to-worker message."""

    type: str
    content: str
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> InboxMessage:
        return cls(
            type=str(raw.get("type", "message")),
            content=str(raw.get("content", "")),
            timestamp=str(raw.get("timestamp", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "timestamp": self.timestamp}


@dataclass(slots=True)
class OutboxMessage:
    """Worker-to-lead lifecycle event."""

    type: OutboxEventType
    timestamp: str = field(default_factory=utc_now_iso)
    message: str | None = None
    task_id: str | None = None
    summary: str | None = None
    error: str | None = None
    request_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> OutboxMessage:
        return cls(
            type=OutboxEventType(str(raw.get("type"))),
            timestamp=str(raw.get("timestamp", "")),
            message=_optional_str(raw.get("message")),
            task_id=_optional_str(raw.get("taskId")),
            summary=_optional_str(raw.get("summary")),
            error=_optional_str(raw.get("error")),
            request_id=_optional_str(raw.get("requestId")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type.value}
        for key, value in (
            ("message", self.message),
            ("taskId", self.task_id),
            ("summary", self.summary),
            ("error", self.error),
            ("requestId", self.request_id),
        ):
            if value is not None:
                payload[key] = value
        payload["timestamp"] = self.timestamp
        return payload


@dataclass(slots=True)
class ShutdownSignal:
    """Lead request for a worker to stop."""

    request_id: str
    reason: str
    timestamp: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ShutdownSignal:
        request_id = raw.get("requestId")
        if not isinstance(request_id, str):
            raise ValueError("signal.requestId must be a string")
        return cls(
            request_id=request_id,
            reason=str(raw.get("reason", "")),
            timestamp=str(raw.get("timestamp", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"requestId": self.request_id, "reason": self.reason, "timestamp": self.timestamp}


@dataclass(slots=True)
class Heartbeat:
    """Latest daemon status snapshot for one worker."""

    worker_name: str
    team_name: str
    provider: str
    pid: int
    last_poll_at: str
    consecutive_errors: int
    status: WorkerStatus
    current_task_id: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Heartbeat:
        current_task_id = raw.get("currentTaskId")
        return cls(
            worker_name=str(raw["workerName"]),
            team_name=str(raw["teamName"]),
            provider=str(raw.get("provider", "")),
            pid=int(raw.get("pid", 0)),
            last_poll_at=str(raw.get("lastPollAt", "")),
            consecutive_errors=int(raw.get("consecutiveErrors", 0)),
            status=WorkerStatus(str(raw.get("status"))),
            current_task_id=str(current_task_id) if current_task_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "workerName": self.worker_name,
            "teamName": self.team_name,
            "provider": self.provider,
            "pid": self.pid,
            "lastPollAt": self.last_poll_at,
            "consecutiveErrors": self.consecutive_errors,
            "status": self.status.value,
        }
        if self.current_task_id is not None:
            payload["currentTaskId"] = self.current_task_id
        return payload


def _enum_value(value: Enum | str) -> str:
    return value.value if isinstance(value, Enum) else value


def _optional_str(value: object) -> str | None:
    return str(value) if value is not None else None
