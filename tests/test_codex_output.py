from __future__ import annotations

import json

import allure

from team_bridge.bridge.executor import parse_codex_output

pytestmark = [
    allure.epic("Team Bridge"),
    allure.feature("Executor Output Normalization"),
]


def _jsonl(*events: object) -> str:
    return "\n".join(json.dumps(event) for event in events) + "\n"


def test_agent_messages_are_joined_in_arrival_order() -> None:
    output = _jsonl(
        {"type": "thread.started", "thread_id": "t1"},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "hidden"}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": "first"}},
        {"type": "output_text", "text": "second"},
        {"type": "turn.completed"},
    )

    assert parse_codex_output(output) == "first\nsecond"


def test_message_content_as_string_or_text_parts() -> None:
    output = _jsonl(
        {"type": "message", "content": "plain"},
        {
            "type": "message",
            "content": [
                {"type": "text", "text": "part one"},
                {"type": "image", "url": "ignored"},
                {"type": "text", "text": "part two"},
            ],
        },
    )

    assert parse_codex_output(output) == "plain\npart one\npart two"


def test_unparsable_lines_are_skipped() -> None:
    output = "banner line\n[1, 2]\n" + _jsonl({"type": "output_text", "text": "kept"})

    assert parse_codex_output(output) == "kept"


def test_raw_output_is_returned_when_nothing_matches() -> None:
    output = "plain text reply\n" + _jsonl({"type": "turn.completed"})

    assert parse_codex_output(output) == output


def test_empty_output_stays_empty() -> None:
    assert parse_codex_output("") == ""
