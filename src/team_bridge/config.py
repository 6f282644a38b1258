"""Startup configuration for a worker bridge daemon."""

from __future__ import annotations

import json
import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from team_bridge.bridge.errors import ConfigError
from team_bridge.bridge.executor import ExecutorKind
from team_bridge.bridge.layout import DEFAULT_ROOT, STATE_DIRNAME

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("teamName", "workerName", "provider", "workingDirectory")
DEFAULT_OUTPUT_REDIRECT_DIR = Path(STATE_DIRNAME) / "outputs"


class OutputPathPolicy(str, Enum):
    """Where audit output files may be written."""

    STRICT = "strict"
    REDIRECT_OUTPUT = "redirect_output"


@dataclass(slots=True)
class PolicySettings:
    """Environment-driven switches, resolved once at startup."""

    output_path_policy: OutputPathPolicy = OutputPathPolicy.STRICT
    output_redirect_dir: Path = DEFAULT_OUTPUT_REDIRECT_DIR
    allow_external_prompt: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> PolicySettings:
        env = os.environ if env is None else env
        raw_policy = env.get("TEAM_BRIDGE_OUTPUT_PATH_POLICY", "").strip().lower()
        try:
            policy = OutputPathPolicy(raw_policy) if raw_policy else OutputPathPolicy.STRICT
        except ValueError as error:
            raise ConfigError(
                f"Invalid TEAM_BRIDGE_OUTPUT_PATH_POLICY: {raw_policy!r}. "
                "Expected 'strict' or 'redirect_output'.",
            ) from error

        settings = cls(
            output_path_policy=policy,
            output_redirect_dir=Path(
                env.get("TEAM_BRIDGE_OUTPUT_REDIRECT_DIR", "").strip()
                or DEFAULT_OUTPUT_REDIRECT_DIR,
            ),
            allow_external_prompt=_env_bool(
                env,
                "TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT",
                default=False,
            ),
        )
        if settings.allow_external_prompt:
            logger.warning(
                "TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT is enabled: prompt files outside the "
                "working directory are allowed.",
            )
        return settings


@dataclass(slots=True)
class BridgeConfig:
    """Everything one daemon needs, built once and passed to each component."""

    team_name: str
    worker_name: str
    provider: ExecutorKind
    working_directory: Path
    poll_interval_ms: int = 3_000
    task_timeout_ms: int = 600_000
    max_consecutive_errors: int = 3
    outbox_max_lines: int = 500
    model: str | None = None
    root: Path = DEFAULT_ROOT
    command_prefixes: dict[ExecutorKind, list[str]] = field(default_factory=dict)
    log_dir: Path | None = None
    policy: PolicySettings = field(default_factory=PolicySettings)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def task_timeout_seconds(self) -> float:
        return self.task_timeout_ms / 1000.0

    @property
    def effective_log_dir(self) -> Path:
        return self.log_dir or self.working_directory / STATE_DIRNAME / "logs"

    @classmethod
    def from_file(cls, path: Path, env: Mapping[str, str] | None = None) -> BridgeConfig:
        """Load the JSON config record written by the lead for this worker."""

        try:
            raw = json.loads(Path(path).read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            raise ConfigError(f"Failed to read config from {path}: {error}") from error
        if not isinstance(raw, dict):
            raise ConfigError(f"Config in {path} must be a JSON object")
        return cls.from_dict(raw, env=env)

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        env: Mapping[str, str] | None = None,
    ) -> BridgeConfig:
        """Validate required fields, apply defaults and environment overrides."""

        env = os.environ if env is None else env
        for name in REQUIRED_FIELDS:
            if not raw.get(name):
                raise ConfigError(f"Missing required config field: {name}")

        provider_raw = str(raw["provider"])
        try:
            provider = ExecutorKind(provider_raw)
        except ValueError as error:
            raise ConfigError(
                f"Invalid provider: {provider_raw}. Must be 'codex' or 'gemini'.",
            ) from error

        root_raw = env.get("TEAM_BRIDGE_ROOT", "").strip() or raw.get("root")
        log_dir_raw = env.get("TEAM_BRIDGE_LOG_DIR", "").strip()
        config = cls(
            team_name=str(raw["teamName"]),
            worker_name=str(raw["workerName"]),
            provider=provider,
            working_directory=Path(str(raw["workingDirectory"])).expanduser(),
            poll_interval_ms=_int_field(raw, "pollIntervalMs", 3_000),
            task_timeout_ms=_int_field(raw, "taskTimeoutMs", 600_000),
            max_consecutive_errors=_int_field(raw, "maxConsecutiveErrors", 3),
            outbox_max_lines=_int_field(raw, "outboxMaxLines", 500),
            model=str(raw["model"]) if raw.get("model") else None,
            root=Path(str(root_raw)).expanduser() if root_raw else DEFAULT_ROOT,
            command_prefixes=_command_prefixes(env),
            log_dir=Path(log_dir_raw) if log_dir_raw else None,
            policy=PolicySettings.from_env(env),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ``ConfigError`` for values the daemon cannot run with."""

        if self.poll_interval_ms < 0:
            raise ConfigError("pollIntervalMs must be >= 0.")
        if self.task_timeout_ms <= 0:
            raise ConfigError("taskTimeoutMs must be > 0.")
        if self.max_consecutive_errors <= 0:
            raise ConfigError("maxConsecutiveErrors must be > 0.")
        if self.outbox_max_lines <= 0:
            raise ConfigError("outboxMaxLines must be > 0.")


def _int_field(raw: Mapping[str, Any], name: str, default: int) -> int:
    value = raw.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        raise ConfigError(f"Invalid {name}: {value!r}")
    try:
        return int(value)
    except ValueError as error:
        raise ConfigError(f"Invalid {name}: {value!r}") from error


def _command_prefixes(env: Mapping[str, str]) -> dict[ExecutorKind, list[str]]:
    prefixes: dict[ExecutorKind, list[str]] = {}
    for kind in ExecutorKind:
        raw = env.get(f"TEAM_BRIDGE_{kind.value.upper()}_COMMAND", "").strip()
        if raw:
            prefixes[kind] = shlex.split(raw)
    return prefixes


def _env_bool(env: Mapping[str, str], name: str, *, default: bool) -> bool:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {value!r}")


def resolve_root(root: Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    """Explicit ``root``, else ``TEAM_BRIDGE_ROOT``, else ``~/.claude``."""

    if root is not None:
        return root.expanduser()
    env = os.environ if env is None else env
    raw = env.get("TEAM_BRIDGE_ROOT", "").strip()
    return Path(raw).expanduser() if raw else DEFAULT_ROOT
