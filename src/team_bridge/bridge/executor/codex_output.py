"""Decode the codex ``--json`` event stream into the agent's reply text."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

_Extractor = Callable[[dict[str, Any]], list[str]]


def _item_completed(event: dict[str, Any]) -> list[str]:
    item = event.get("item")
    if not isinstance(item, dict) or item.get("type") != "agent_message":
        return []
    text = item.get("text")
    return [text] if isinstance(text, str) and text else []


def _message(event: dict[str, Any]) -> list[str]:
    content = event.get("content")
    if isinstance(content, str):
        return [content] if content else []
    if not isinstance(content, list):
        return []
    texts: list[str] = []
    for part in content:
        if not isinstance(part, dict) or part.get("type") != "text":
            continue
        text = part.get("text")
        if isinstance(text, str) and text:
            texts.append(text)
    return texts


def _output_text(event: dict[str, Any]) -> list[str]:
    text = event.get("text")
    return [text] if isinstance(text, str) and text else []


# Event type -> text extractor.  Any other type is ignored.
_EXTRACTORS: dict[str, _Extractor] = {
    "item.completed": _item_completed,
    "message": _message,
    "output_text": _output_text,
}


def parse_codex_output(output: str) -> str:
    """Join reply texts from recognized events in arrival order.

    Non-JSON lines and unknown event types are skipped.  When nothing is
    recognized the raw output is returned unchanged.
    """

    messages: list[str] = []
    for line in output.strip().splitlines():
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue
        extractor = _EXTRACTORS.get(str(event.get("type")))
        if extractor is not None:
            messages.extend(extractor(event))
    return "\n".join(messages) or output
