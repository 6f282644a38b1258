from __future__ import annotations

import json
import logging
import shlex
import sys
from pathlib import Path

import allure
import pytest

from team_bridge.bridge.errors import ConfigError
from team_bridge.bridge.executor import ExecutorKind
from team_bridge.bridge.layout import DEFAULT_ROOT
from team_bridge.config import BridgeConfig, OutputPathPolicy, PolicySettings, resolve_root

pytestmark = [
    allure.epic("Team Bridge"),
    allure.feature("Configuration"),
]


def _record(**overrides) -> dict[str, object]:
    record: dict[str, object] = {
        "teamName": "alpha",
        "workerName": "w1",
        "provider": "codex",
        "workingDirectory": "/tmp/project",
    }
    record.update(overrides)
    return record


def test_from_dict_applies_defaults() -> None:
    config = BridgeConfig.from_dict(_record(), env={})

    assert config.provider is ExecutorKind.CODEX
    assert config.poll_interval_ms == 3_000
    assert config.task_timeout_ms == 600_000
    assert config.max_consecutive_errors == 3
    assert config.outbox_max_lines == 500
    assert config.model is None
    assert config.root == DEFAULT_ROOT
    assert config.command_prefixes == {}
    assert config.poll_interval_seconds == 3.0
    assert config.task_timeout_seconds == 600.0
    assert config.effective_log_dir == Path("/tmp/project/.omc/logs")
    assert config.policy.output_path_policy is OutputPathPolicy.STRICT


def test_from_file_reads_optional_fields(tmp_path: Path) -> None:
    path = tmp_path / "worker.json"
    path.write_text(
        json.dumps(
            _record(
                provider="gemini",
                pollIntervalMs=250,
                taskTimeoutMs=1_000,
                maxConsecutiveErrors=5,
                outboxMaxLines=40,
                model="gemini-2.5-pro",
            ),
        ),
        "utf-8",
    )

    config = BridgeConfig.from_file(path, env={})

    assert config.provider is ExecutorKind.GEMINI
    assert config.poll_interval_seconds == 0.25
    assert config.task_timeout_seconds == 1.0
    assert config.max_consecutive_errors == 5
    assert config.outbox_max_lines == 40
    assert config.model == "gemini-2.5-pro"


@pytest.mark.parametrize("field", ["teamName", "workerName", "provider", "workingDirectory"])
def test_missing_required_field_raises(field: str) -> None:
    record = _record()
    del record[field]

    with pytest.raises(ConfigError, match=f"Missing required config field: {field}"):
        BridgeConfig.from_dict(record, env={})


def test_invalid_provider_raises() -> None:
    with pytest.raises(ConfigError, match="Invalid provider: claude"):
        BridgeConfig.from_dict(_record(provider="claude"), env={})


def test_unreadable_config_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{nope", "utf-8")

    with pytest.raises(ConfigError, match="Failed to read config"):
        BridgeConfig.from_file(path, env={})
    with pytest.raises(ConfigError, match="Failed to read config"):
        BridgeConfig.from_file(tmp_path / "missing.json", env={})


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("taskTimeoutMs", 0),
        ("maxConsecutiveErrors", -1),
        ("outboxMaxLines", 0),
        ("pollIntervalMs", -5),
        ("pollIntervalMs", "soon"),
        ("taskTimeoutMs", True),
    ],
)
def test_invalid_numeric_fields_raise(field: str, value: object) -> None:
    with pytest.raises(ConfigError, match=field):
        BridgeConfig.from_dict(_record(**{field: value}), env={})


def test_environment_overrides(tmp_path: Path) -> None:
    env = {
        "TEAM_BRIDGE_ROOT": str(tmp_path / "root"),
        "TEAM_BRIDGE_CODEX_COMMAND": shlex.join(
            [sys.executable, "-m", "team_bridge.bridge.executor.echo_agent"],
        ),
        "TEAM_BRIDGE_LOG_DIR": str(tmp_path / "logs"),
    }

    config = BridgeConfig.from_dict(_record(), env=env)

    assert config.root == tmp_path / "root"
    assert config.command_prefixes == {
        ExecutorKind.CODEX: [sys.executable, "-m", "team_bridge.bridge.executor.echo_agent"],
    }
    assert config.effective_log_dir == tmp_path / "logs"


def test_policy_settings_from_env(caplog: pytest.LogCaptureFixture) -> None:
    env = {
        "TEAM_BRIDGE_OUTPUT_PATH_POLICY": "redirect_output",
        "TEAM_BRIDGE_OUTPUT_REDIRECT_DIR": "/var/tmp/outputs",
        "TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT": "yes",
    }

    with caplog.at_level(logging.WARNING, logger="team_bridge.config"):
        policy = PolicySettings.from_env(env)

    assert policy.output_path_policy is OutputPathPolicy.REDIRECT_OUTPUT
    assert policy.output_redirect_dir == Path("/var/tmp/outputs")
    assert policy.allow_external_prompt is True
    assert "TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT is enabled" in caplog.text


def test_policy_settings_defaults() -> None:
    policy = PolicySettings.from_env({})

    assert policy.output_path_policy is OutputPathPolicy.STRICT
    assert policy.output_redirect_dir == Path(".omc/outputs")
    assert policy.allow_external_prompt is False


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TEAM_BRIDGE_OUTPUT_PATH_POLICY", "lenient"),
        ("TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT", "maybe"),
    ],
)
def test_policy_settings_reject_unknown_values(name: str, value: str) -> None:
    with pytest.raises(ConfigError, match=name):
        PolicySettings.from_env({name: value})


def test_resolve_root_precedence(tmp_path: Path) -> None:
    assert resolve_root(tmp_path / "explicit", env={"TEAM_BRIDGE_ROOT": "/ignored"}) == (
        tmp_path / "explicit"
    )
    assert resolve_root(None, env={"TEAM_BRIDGE_ROOT": str(tmp_path)}) == tmp_path
    assert resolve_root(None, env={}) == DEFAULT_ROOT
