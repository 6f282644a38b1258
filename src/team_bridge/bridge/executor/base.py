"""Executor kinds, request payload and per-kind command templates."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_CODEX_MODEL = "gpt-5.3-codex"


class ExecutorKind(str, Enum):
    """Supported external CLIs."""

    CODEX = "codex"
    GEMINI = "gemini"


@dataclass(slots=True)
class ExecutionRequest:
    """Inputs for one external CLI run."""

    kind: ExecutorKind
    prompt: str
    working_directory: Path
    timeout_seconds: float
    model: str | None = None


def build_command(
    kind: ExecutorKind,
    model: str | None,
    command_prefix: Sequence[str] | None = None,
) -> list[str]:
    """Argument vector for ``kind``; ``command_prefix`` replaces the executable."""

    if kind is ExecutorKind.CODEX:
        head = list(command_prefix) if command_prefix else ["codex"]
        return [*head, "exec", "-m", model or DEFAULT_CODEX_MODEL, "--json", "--full-auto"]

    head = list(command_prefix) if command_prefix else ["gemini"]
    args = [*head, "--yolo"]
    if model:
        args.extend(["--model", model])
    return args
