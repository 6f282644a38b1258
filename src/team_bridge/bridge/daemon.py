"""Worker bridge daemon: polls the team task files and runs one CLI per task."""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from team_bridge.bridge.channels import ChannelStore
from team_bridge.bridge.errors import BridgeError, ExecutionAborted, ExecutionFailed
from team_bridge.bridge.executor import ExecutionHandle, ExecutionRequest
from team_bridge.bridge.heartbeat import HeartbeatStore
from team_bridge.bridge.models import (
    Heartbeat,
    InboxMessage,
    OutboxEventType,
    OutboxMessage,
    ShutdownSignal,
    Task,
    TaskStatus,
    TaskUpdate,
    WorkerStatus,
    utc_now_iso,
)
from team_bridge.bridge.prompts import (
    build_task_prompt,
    output_file_path,
    summarize_output,
    write_output_file,
    write_prompt_file,
)
from team_bridge.bridge.roster import TeamRoster
from team_bridge.bridge.session import HostSession
from team_bridge.bridge.task_store import TaskStore
from team_bridge.config import BridgeConfig

logger = logging.getLogger(__name__)

IDLE_MESSAGE = "All assigned tasks complete. Standing by."
QUARANTINE_SLEEP_MULTIPLIER = 3
SHUTDOWN_GRACE_SECONDS = 5.0


class Executor(Protocol):
    """Starts one external CLI run."""

    def run(self, request: ExecutionRequest) -> ExecutionHandle: ...


class CycleOutcome(str, Enum):
    """What a single poll cycle ended with."""

    IDLE = "idle"
    COMPLETED = "completed"
    FAILED = "failed"
    QUARANTINED = "quarantined"
    ERROR = "error"
    SHUTDOWN = "shutdown"
    STOPPED = "stopped"


@dataclass(slots=True)
class DaemonRunSummary:
    """Counters reported when :meth:`BridgeDaemon.run` returns."""

    cycles: int = 0
    completed: int = 0
    failed: int = 0
    errors: int = 0
    shutdown_request_id: str | None = None
    stop_signal: str | None = None


class BridgeDaemon:
    """Sequential poll loop for one worker of one team.

    States: ``polling`` -> ``executing`` -> ``polling``; ``quarantined`` once
    ``max_consecutive_errors`` is reached; ``shutdown`` is terminal.  Only one
    task runs at a time and cycles never overlap.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: BridgeConfig,
        *,
        task_store: TaskStore,
        channels: ChannelStore,
        heartbeats: HeartbeatStore,
        roster: TeamRoster,
        executor: Executor,
        session: HostSession,
    ) -> None:
        self.config = config
        self.task_store = task_store
        self.channels = channels
        self.heartbeats = heartbeats
        self.roster = roster
        self.executor = executor
        self.session = session
        self.consecutive_errors = 0
        self._idle_notified = False
        self._quarantine_notified = False
        self._active: ExecutionHandle | None = None
        self._current_task_id: str | None = None
        self._pending_signal: ShutdownSignal | None = None
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @property
    def team_name(self) -> str:
        return self.config.team_name

    @property
    def worker_name(self) -> str:
        return self.config.worker_name

    def run(self, *, max_cycles: int | None = None) -> DaemonRunSummary:
        """Poll until shut down, stopped by a process signal or ``max_cycles``."""

        summary = DaemonRunSummary()
        logger.info(
            "%s@%s starting (%s)",
            self.worker_name,
            self.team_name,
            self.config.provider.value,
        )
        self.roster.register(
            self.team_name,
            self.worker_name,
            self.config.working_directory,
            provider=self.config.provider.value,
        )
        with self._signal_handlers():
            while max_cycles is None or summary.cycles < max_cycles:
                if self._stop_requested:
                    self._stop()
                    summary.stop_signal = self._stop_signal_name
                    return summary

                outcome = self.run_cycle()
                summary.cycles += 1
                if outcome is CycleOutcome.COMPLETED:
                    summary.completed += 1
                elif outcome is CycleOutcome.FAILED:
                    summary.failed += 1
                elif outcome is CycleOutcome.ERROR:
                    summary.errors += 1
                elif outcome is CycleOutcome.SHUTDOWN:
                    if self._pending_signal is not None:
                        summary.shutdown_request_id = self._pending_signal.request_id
                    return summary
                elif outcome is CycleOutcome.STOPPED:
                    self._stop()
                    summary.stop_signal = self._stop_signal_name
                    return summary

                if outcome is CycleOutcome.QUARANTINED:
                    self._sleep_with_stop(
                        self.config.poll_interval_seconds * QUARANTINE_SLEEP_MULTIPLIER,
                    )
                else:
                    self._sleep_with_stop(self.config.poll_interval_seconds)
        return summary

    def run_cycle(self) -> CycleOutcome:
        """One pass of the state machine; never raises."""

        try:
            return self._cycle()
        except Exception:
            self.consecutive_errors += 1
            logger.exception(
                "Poll cycle error for %s@%s (consecutive errors: %d)",
                self.worker_name,
                self.team_name,
                self.consecutive_errors,
            )
            return CycleOutcome.ERROR

    def request_stop(self, signal_name: str = "manual") -> None:
        """Ask the loop to stop at the next opportunity."""

        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _cycle(self) -> CycleOutcome:
        shutdown = self.channels.check_shutdown_signal(self.team_name, self.worker_name)
        if shutdown is not None:
            self._shutdown(shutdown)
            return CycleOutcome.SHUTDOWN

        if self.consecutive_errors >= self.config.max_consecutive_errors:
            return self._quarantine()
        self._quarantine_notified = False

        self._write_heartbeat(WorkerStatus.POLLING)
        messages = self.channels.read_new_inbox(self.team_name, self.worker_name)
        task = self.task_store.find_next(self.team_name, self.worker_name)

        if task is None:
            if not self._idle_notified:
                self._emit(OutboxMessage(type=OutboxEventType.IDLE, message=IDLE_MESSAGE))
                self._idle_notified = True
            outcome = CycleOutcome.IDLE
        else:
            self._idle_notified = False
            outcome = self._process_task(task, messages)
            if outcome in {CycleOutcome.SHUTDOWN, CycleOutcome.STOPPED}:
                return outcome

        self.channels.rotate_outbox(
            self.team_name,
            self.worker_name,
            self.config.outbox_max_lines,
        )
        return outcome

    def _quarantine(self) -> CycleOutcome:
        if not self._quarantine_notified:
            self._emit(
                OutboxMessage(
                    type=OutboxEventType.ERROR,
                    message=(
                        f"Self-quarantined after {self.consecutive_errors} consecutive errors. "
                        "Awaiting lead intervention or shutdown."
                    ),
                ),
            )
            self._quarantine_notified = True
            logger.warning(
                "%s@%s quarantined after %d consecutive errors",
                self.worker_name,
                self.team_name,
                self.consecutive_errors,
            )
        self._write_heartbeat(WorkerStatus.QUARANTINED)
        return CycleOutcome.QUARANTINED

    def _process_task(self, task: Task, messages: list[InboxMessage]) -> CycleOutcome:
        self.task_store.update(
            self.team_name,
            task.id,
            TaskUpdate(status=TaskStatus.IN_PROGRESS),
        )
        self._current_task_id = task.id
        settled = False
        try:
            self._write_heartbeat(WorkerStatus.EXECUTING, task.id)

            # The lead may have asked us to stop between the scan and the claim.
            shutdown = self.channels.check_shutdown_signal(self.team_name, self.worker_name)
            if shutdown is not None:
                self._revert(task.id)
                self._shutdown(shutdown)
                return CycleOutcome.SHUTDOWN

            logger.info("Executing task %s: %s", task.id, task.subject)
            try:
                output = self._execute(task, messages)
            except ExecutionAborted:
                self._revert(task.id)
                if self._pending_signal is not None:
                    self._shutdown(self._pending_signal)
                    return CycleOutcome.SHUTDOWN
                return CycleOutcome.STOPPED
            except (ExecutionFailed, OSError, ValueError) as error:
                # ValueError covers prompts that cannot be encoded (lone surrogates).
                self._fail_task(task, str(error))
                return CycleOutcome.FAILED

            self.task_store.update(
                self.team_name,
                task.id,
                TaskUpdate(status=TaskStatus.COMPLETED),
            )
            settled = True
            self.consecutive_errors = 0
            self._emit(
                OutboxMessage(
                    type=OutboxEventType.TASK_COMPLETE,
                    task_id=task.id,
                    summary=summarize_output(output),
                ),
            )
            logger.info("Task %s completed", task.id)
            return CycleOutcome.COMPLETED
        except Exception:
            # A claimed task ends completed or back at pending, never stuck in progress.
            if not settled:
                self._revert_quietly(task.id)
            raise
        finally:
            self._current_task_id = None

    def _execute(self, task: Task, messages: list[InboxMessage]) -> str:
        config = self.config
        prompt = build_task_prompt(task, messages, config.working_directory)
        write_prompt_file(config.working_directory, self.team_name, task.id, prompt)
        output_path = output_file_path(
            config.working_directory,
            self.team_name,
            task.id,
            config.policy,
        )

        handle = self.executor.run(
            ExecutionRequest(
                kind=config.provider,
                prompt=prompt,
                working_directory=config.working_directory,
                timeout_seconds=config.task_timeout_seconds,
                model=config.model,
            ),
        )
        self._active = handle
        try:
            output = handle.wait(abort=self._should_abort)
        finally:
            self._active = None

        write_output_file(output_path, output)
        return output

    def _should_abort(self) -> bool:
        if self._stop_requested:
            return True
        shutdown = self.channels.check_shutdown_signal(self.team_name, self.worker_name)
        if shutdown is None:
            return False
        logger.info("Shutdown requested while task %s is running", self._current_task_id)
        self._pending_signal = shutdown
        return True

    def _fail_task(self, task: Task, error: str) -> None:
        self.consecutive_errors += 1
        sidecar = self.task_store.record_failure(self.team_name, task.id, error)
        self._revert(task.id)
        self._emit(
            OutboxMessage(
                type=OutboxEventType.TASK_FAILED,
                task_id=task.id,
                error=f"{error} (attempt {sidecar.retry_count})",
            ),
        )
        logger.warning("Task %s failed: %s", task.id, error)

    def _revert(self, task_id: str) -> None:
        self.task_store.update(self.team_name, task_id, TaskUpdate(status=TaskStatus.PENDING))

    def _revert_quietly(self, task_id: str) -> None:
        try:
            self._revert(task_id)
        except (OSError, BridgeError) as error:
            logger.warning("Could not return task %s to pending: %s", task_id, error)

    def _shutdown(self, request: ShutdownSignal) -> None:
        """Acknowledge a lead shutdown request and leave no worker state behind."""

        logger.info("Shutdown signal received: %s", request.reason or "(no reason)")
        self._pending_signal = request
        if self._active is not None:
            self._active.terminate(grace_seconds=SHUTDOWN_GRACE_SECONDS)
            self._active = None

        self._emit(
            OutboxMessage(type=OutboxEventType.SHUTDOWN_ACK, request_id=request.request_id),
        )
        self._unregister()
        self.channels.delete_shutdown_signal(self.team_name, self.worker_name)
        self.heartbeats.delete(self.team_name, self.worker_name)
        logger.info("Shutdown complete for %s@%s", self.worker_name, self.team_name)
        self.session.terminate(self.team_name, self.worker_name)

    def _stop(self) -> None:
        logger.info(
            "Stopping %s@%s on %s",
            self.worker_name,
            self.team_name,
            self._stop_signal_name or "request",
        )
        if self._active is not None:
            self._active.terminate(grace_seconds=SHUTDOWN_GRACE_SECONDS)
            self._active = None
        self.heartbeats.delete(self.team_name, self.worker_name)
        self._unregister()

    def _unregister(self) -> None:
        try:
            self.roster.unregister(
                self.team_name,
                self.worker_name,
                self.config.working_directory,
            )
        except (OSError, ValueError) as error:
            logger.warning("Could not unregister %s: %s", self.worker_name, error)

    def _emit(self, message: OutboxMessage) -> None:
        self.channels.append_outbox(self.team_name, self.worker_name, message)

    def _write_heartbeat(self, status: WorkerStatus, task_id: str | None = None) -> None:
        self.heartbeats.write(
            Heartbeat(
                worker_name=self.worker_name,
                team_name=self.team_name,
                provider=self.config.provider.value,
                pid=os.getpid(),
                last_poll_at=utc_now_iso(),
                consecutive_errors=self.consecutive_errors,
                status=status,
                current_task_id=task_id,
            ),
        )

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in the main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
