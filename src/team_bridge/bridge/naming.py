"""Identifier validation for names that end up in filesystem paths."""

from __future__ import annotations

import re

from team_bridge.bridge.errors import InvalidNameError

MAX_NAME_LENGTH = 50

_NAME_DISALLOWED = re.compile(r"[^A-Za-z0-9-]")
_TASK_ID = re.compile(r"[A-Za-z0-9._-]+")


def sanitize_name(name: str) -> str:
    """Strip everything but alphanumerics and hyphens, then clamp length."""

    sanitized = _NAME_DISALLOWED.sub("", name)
    if not sanitized:
        raise InvalidNameError(
            f'Invalid name: "{name}" contains no valid characters (alphanumeric or hyphen)',
        )
    return sanitized[:MAX_NAME_LENGTH]


def sanitize_task_id(task_id: str) -> str:
    """Reject task ids with characters outside ``[A-Za-z0-9._-]``.

    Task ids are never rewritten: an id that would need cleaning is refused,
    so two distinct ids can never collapse onto the same file.
    """

    if not _TASK_ID.fullmatch(task_id):
        raise InvalidNameError(f'Invalid task ID: "{task_id}" contains unsafe characters')
    return task_id
