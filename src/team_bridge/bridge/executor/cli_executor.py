"""Subprocess runner that supervises one external CLI per task."""

from __future__ import annotations

import contextlib
import logging
import subprocess
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import IO

from team_bridge.bridge.errors import ExecutionAborted, ExecutionFailed
from team_bridge.bridge.executor.base import (
    MAX_OUTPUT_BYTES,
    ExecutionRequest,
    ExecutorKind,
    build_command,
)
from team_bridge.bridge.executor.codex_output import parse_codex_output

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_POLL_SECONDS = 0.1
_TIMEOUT_KILL_GRACE_SECONDS = 2.0


class CliExecutor:
    """Starts external CLI processes for the configured executor kinds."""

    def __init__(
        self,
        *,
        command_prefixes: Mapping[ExecutorKind, Sequence[str]] | None = None,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
    ) -> None:
        self.command_prefixes = dict(command_prefixes or {})
        self.max_output_bytes = max_output_bytes

    def run(self, request: ExecutionRequest) -> ExecutionHandle:
        """Spawn the process and feed it the prompt; the result stays pending.

        Raises ``ExecutionFailed`` if the process cannot be started.
        """

        args = build_command(request.kind, request.model, self.command_prefixes.get(request.kind))
        try:
            process = subprocess.Popen(  # noqa: S603
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=request.working_directory,
            )
        except OSError as error:
            raise ExecutionFailed(f"Failed to spawn {args[0]}: {error}") from error

        logger.debug("Spawned %s pid=%s", args[0], process.pid)
        return ExecutionHandle(
            process=process,
            kind=request.kind,
            prompt=request.prompt,
            timeout_seconds=request.timeout_seconds,
            max_output_bytes=self.max_output_bytes,
        )


class ExecutionHandle:
    """Live handle on a spawned CLI plus its pending outcome.

    :meth:`wait` settles the outcome exactly once: it either returns the
    normalized reply text or raises ``ExecutionFailed`` / ``ExecutionAborted``.
    Later calls repeat the same outcome.  :meth:`terminate` can be called at
    any time, including from another thread, to stop the process.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        process: subprocess.Popen[bytes],
        kind: ExecutorKind,
        prompt: str,
        timeout_seconds: float,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
    ) -> None:
        self.process = process
        self.kind = kind
        self.timeout_seconds = timeout_seconds
        self._started_at = time.monotonic()
        self._stdout = _BoundedCollector(process.stdout, max_output_bytes)
        self._stderr = _BoundedCollector(process.stderr, max_output_bytes)
        self._stdin_error: OSError | None = None
        self._stdin_thread = threading.Thread(
            target=self._write_prompt,
            args=(prompt,),
            name=f"cli-stdin-{process.pid}",
            daemon=True,
        )
        self._stdin_thread.start()
        self._output: str | None = None
        self._error: Exception | None = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_running(self) -> bool:
        return self.process.poll() is None

    def wait(self, *, abort: Callable[[], bool] | None = None) -> str:
        """Block until the process settles.

        ``abort`` is polled while waiting; once it returns ``True`` the process
        is terminated and ``ExecutionAborted`` is raised.
        """

        if self._output is not None:
            return self._output
        if self._error is not None:
            raise self._error

        try:
            self._output = self._settle(abort)
        except (ExecutionFailed, ExecutionAborted) as error:
            self._error = error
            raise
        return self._output

    def terminate(self, grace_seconds: float = 5.0) -> None:
        """SIGTERM, wait up to ``grace_seconds``, then SIGKILL if still alive."""

        if self.process.poll() is not None:
            return
        try:
            self.process.terminate()
        except OSError:
            return
        try:
            self.process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("pid=%s ignored SIGTERM for %.1fs, killing", self.pid, grace_seconds)
            try:
                self.process.kill()
            except OSError:
                return
            self.process.wait()

    def _settle(self, abort: Callable[[], bool] | None) -> str:
        deadline = self._started_at + self.timeout_seconds
        while True:
            returncode = self.process.poll()
            if returncode is not None:
                return self._resolve(returncode)

            if self._stdin_error is not None:
                self.terminate(_TIMEOUT_KILL_GRACE_SECONDS)
                raise ExecutionFailed(f"Stdin write error: {self._stdin_error}")

            if time.monotonic() >= deadline:
                self.terminate(_TIMEOUT_KILL_GRACE_SECONDS)
                raise ExecutionFailed(
                    f"CLI timed out after {int(self.timeout_seconds * 1000)}ms",
                    timed_out=True,
                )

            if abort is not None and abort():
                self.terminate()
                raise ExecutionAborted(f"CLI pid={self.pid} terminated on request")

            time.sleep(_POLL_SECONDS)

    def _resolve(self, returncode: int) -> str:
        self._stdout.join()
        self._stderr.join()
        stdout = self._stdout.text()
        if returncode == 0 or stdout.strip():
            if returncode != 0:
                logger.info("CLI exited with code %s but produced output, accepting it", returncode)
            if self.kind is ExecutorKind.CODEX:
                return parse_codex_output(stdout)
            return stdout.strip()
        stderr = self._stderr.text()
        raise ExecutionFailed(f"CLI exited with code {returncode}: {stderr or 'No output'}")

    def _write_prompt(self, prompt: str) -> None:
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            stdin.write(prompt.encode("utf-8"))
            stdin.flush()
        except BrokenPipeError:
            # Child exited without reading everything; its exit status decides.
            pass
        except OSError as error:
            self._stdin_error = error
        finally:
            with contextlib.suppress(OSError):
                stdin.close()


class _BoundedCollector:
    """Drains a pipe on a thread, keeping at most ``limit`` bytes."""

    def __init__(self, stream: IO[bytes] | None, limit: int) -> None:
        self._stream = stream
        self._limit = limit
        self._buffer = bytearray()
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def join(self, timeout: float = 5.0) -> None:
        self._thread.join(timeout)

    def text(self) -> str:
        return bytes(self._buffer).decode("utf-8", errors="replace")

    def _drain(self) -> None:
        if self._stream is None:
            return
        with self._stream:
            while True:
                chunk = self._stream.read1(_READ_CHUNK)  # type: ignore[attr-defined]
                if not chunk:
                    return
                room = self._limit - len(self._buffer)
                if room > 0:
                    self._buffer.extend(chunk[:room])
