"""External CLI executor used by the bridge daemon."""

from team_bridge.bridge.executor.base import (
    DEFAULT_CODEX_MODEL,
    MAX_OUTPUT_BYTES,
    ExecutionRequest,
    ExecutorKind,
    build_command,
)
from team_bridge.bridge.executor.cli_executor import CliExecutor, ExecutionHandle
from team_bridge.bridge.executor.codex_output import parse_codex_output

__all__ = [
    "DEFAULT_CODEX_MODEL",
    "MAX_OUTPUT_BYTES",
    "CliExecutor",
    "ExecutionHandle",
    "ExecutionRequest",
    "ExecutorKind",
    "build_command",
    "parse_codex_output",
]
