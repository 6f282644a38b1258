"""Deterministic local agent that stands in for codex/gemini in tests.

Reads the prompt from stdin and reacts to ``[[agent:...]]`` directives in it:

- ``[[agent:reply=TEXT]]`` reply with TEXT (default ``done``)
- ``[[agent:sleep=SECONDS]]`` sleep before replying
- ``[[agent:fail]]`` write to stderr only and exit 2
- ``[[agent:exit=CODE]]`` reply normally but exit with CODE
- ``[[agent:ignore-term]]`` ignore SIGTERM
- ``[[agent:silent]]`` exit 1 with no output at all
"""

from __future__ import annotations

import argparse
import json
import re
import signal
import sys
import time

_DIRECTIVE = re.compile(r"\[\[agent:([a-z-]+)(?:=([^\]]*))?\]\]")


def main(argv: list[str] | None = None) -> int:
    """Emulate one CLI run."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--json", action="store_true")
    parser.add_argument("-m", "--model", default=None)
    args, _ = parser.parse_known_args(argv)

    prompt = sys.stdin.read()
    directives = {name: value for name, value in _DIRECTIVE.findall(prompt)}

    if "ignore-term" in directives:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if "sleep" in directives:
        time.sleep(float(directives["sleep"] or 0))
    if "silent" in directives:
        return 1
    if "fail" in directives:
        print("echo agent failure", file=sys.stderr)
        return 2

    reply = directives.get("reply") or "done"
    if args.model:
        reply = f"{reply} (model={args.model})"
    if args.json:
        _emit_codex_events(reply)
    else:
        print(reply)
    return int(directives.get("exit") or 0)


def _emit_codex_events(reply: str) -> None:
    events = [
        {"type": "thread.started", "thread_id": "echo"},
        {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking"}},
        {"type": "item.completed", "item": {"type": "agent_message", "text": reply}},
        {"type": "turn.completed", "usage": {"input_tokens": 1, "output_tokens": 1}},
    ]
    print("codex banner: not json")
    for event in events:
        print(json.dumps(event))


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
