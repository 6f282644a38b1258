"""Team membership records kept by the lead and mirrored per project."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from team_bridge.bridge.fileio import read_json_object, write_json_atomic
from team_bridge.bridge.layout import TeamLayout, WorkdirLayout
from team_bridge.bridge.models import utc_now_iso

logger = logging.getLogger(__name__)


class TeamRoster:
    """Edits ``members`` in the team config and ``workers`` in the shadow registry."""

    def __init__(self, layout: TeamLayout) -> None:
        self.layout = layout

    def register(
        self,
        team_name: str,
        worker_name: str,
        working_directory: Path,
        *,
        provider: str,
    ) -> None:
        entry = {
            "name": worker_name,
            "agentType": f"mcp-{provider}",
            "provider": provider,
            "cwd": str(working_directory),
            "joinedAt": utc_now_iso(),
        }
        _upsert_entry(self.layout.team_config_path(team_name), "members", entry)
        _upsert_entry(
            WorkdirLayout(working_directory).shadow_registry_path(),
            "workers",
            {**entry, "team": team_name},
        )

    def unregister(self, team_name: str, worker_name: str, working_directory: Path) -> None:
        """Drop the worker from both records; unreadable records are left alone."""

        _remove_entry(self.layout.team_config_path(team_name), "members", worker_name)
        _remove_entry(
            WorkdirLayout(working_directory).shadow_registry_path(),
            "workers",
            worker_name,
        )

    def members(self, team_name: str) -> list[dict[str, Any]]:
        config = read_json_object(self.layout.team_config_path(team_name)) or {}
        return _entries(config, "members")


def _entries(document: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = document.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _upsert_entry(path: Path, key: str, entry: dict[str, Any]) -> None:
    document = read_json_object(path) or {}
    entries = [item for item in _entries(document, key) if item.get("name") != entry["name"]]
    entries.append(entry)
    document[key] = entries
    write_json_atomic(path, document)


def _remove_entry(path: Path, key: str, name: str) -> None:
    if not path.exists():
        return
    document = read_json_object(path)
    if document is None:
        logger.warning("Skipping unreadable roster file %s", path)
        return
    document[key] = [item for item in _entries(document, key) if item.get("name") != name]
    write_json_atomic(path, document)
