"""Task prompt rendering, prompt/output audit files and output path policy."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from pathlib import Path

from team_bridge.bridge.errors import BridgeError
from team_bridge.bridge.fileio import ensure_parent
from team_bridge.bridge.layout import WorkdirLayout
from team_bridge.bridge.models import InboxMessage, Task
from team_bridge.bridge.naming import sanitize_name, sanitize_task_id
from team_bridge.config import OutputPathPolicy, PolicySettings

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 500

_PROMPT_TEMPLATE = """\
CONTEXT: You are an autonomous code executor working on a specific task.
You have FULL filesystem access within the working directory.
You can read files, write files, run shell commands, and make code changes.

TASK:
{subject}

DESCRIPTION:
{description}

WORKING DIRECTORY: {working_directory}
{lead_context}
INSTRUCTIONS:
- Complete the task described above
- Make all necessary code changes directly
- Run relevant verification commands (build, test, lint) to confirm your changes work
- Write a clear summary of what you did to the output file
- If you encounter blocking issues, document them clearly in your output

OUTPUT EXPECTATIONS:
- Document all files you modified
- Include verification results (build/test output)
- Note any issues or follow-up work needed
"""


class PromptAccessError(BridgeError):
    """Prompt file lies outside the working directory and that is not allowed."""


def build_task_prompt(
    task: Task,
    messages: Sequence[InboxMessage],
    working_directory: Path,
) -> str:
    """Render the prompt fed to the external CLI on stdin."""

    lead_context = ""
    if messages:
        lines = "\n".join(f"[{message.timestamp}] {message.content}" for message in messages)
        lead_context = f"\nCONTEXT FROM TEAM LEAD:\n{lines}\n"
    return _PROMPT_TEMPLATE.format(
        subject=task.subject,
        description=task.description,
        working_directory=working_directory,
        lead_context=lead_context,
    )


def audit_filename(team_name: str, task_id: str, *, now_ms: int | None = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"team-{sanitize_name(team_name)}-task-{sanitize_task_id(task_id)}-{stamp}.md"


def write_prompt_file(working_directory: Path, team_name: str, task_id: str, prompt: str) -> Path:
    path = WorkdirLayout(working_directory).prompts_dir / audit_filename(team_name, task_id)
    ensure_parent(path)
    path.write_text(prompt, "utf-8")
    return path


def output_file_path(
    working_directory: Path,
    team_name: str,
    task_id: str,
    policy: PolicySettings,
) -> Path:
    """Where the reply of a task run is archived, after applying the policy."""

    default = WorkdirLayout(working_directory).outputs_dir / audit_filename(team_name, task_id)
    return redirect_output_path(default, working_directory, policy)


def write_output_file(path: Path, output: str) -> Path:
    ensure_parent(path)
    path.write_text(output, "utf-8")
    return path


def redirect_output_path(output_file: Path, base_dir: Path, policy: PolicySettings) -> Path:
    """Apply the output path policy to a requested output file.

    ``strict`` keeps the path as requested.  ``redirect_output`` keeps only
    the file name and places it in the redirect directory, resolved against
    ``base_dir`` when relative.  If that directory cannot be created the
    requested path is used.
    """

    if policy.output_path_policy is OutputPathPolicy.STRICT:
        return output_file

    redirect_dir = policy.output_redirect_dir
    if not redirect_dir.is_absolute():
        redirect_dir = base_dir / redirect_dir
    try:
        redirect_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning("Failed to create redirect directory %s: %s", redirect_dir, error)
        return output_file

    redirected = redirect_dir / (output_file.name or "output.txt")
    if redirected != output_file:
        logger.info("Redirecting output from %s to %s", output_file, redirected)
    return redirected


def read_prompt_file(path: Path, working_directory: Path, policy: PolicySettings) -> str:
    """Read a prompt/context file, refusing files outside ``working_directory``
    unless external prompts are allowed."""

    base = working_directory.resolve()
    resolved = (path if path.is_absolute() else base / path).resolve()
    if not resolved.is_relative_to(base) and not policy.allow_external_prompt:
        raise PromptAccessError(
            f"Prompt file {resolved} is outside the working directory {base}. "
            "Set TEAM_BRIDGE_ALLOW_EXTERNAL_PROMPT=1 to allow it.",
        )
    return resolved.read_text("utf-8")


def summarize_output(output: str, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    if not output:
        return "(empty output)"
    if len(output) > max_chars:
        return output[:max_chars] + "... (truncated)"
    return output
