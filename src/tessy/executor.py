"""Task scheduling and execution."""

from __future__ import annotations

import heapq
import os
import queue
import subprocess
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from tessy.actions import ShellSettings, execute_action
from tessy.graph import TaskGraph, subgraph_reachable_from
from tessy.logging import Logger
from tessy.parser import Task
from tessy.process_runner import (
    ProcessCancelledError,
    ProcessRunnerFactory,
    TaskOutputTypes,
    make_process_runner,
)
from tessy.report import RunReport, RunStatus, TaskOutcome, TaskState
from tessy.staleness import (
    TaskStatus,
    classify_graph,
    snapshot_inputs,
    snapshot_outputs,
    task_base_dir,
    task_signature,
)
from tessy.state import FingerprintStore, StoreEntry


class ExecutionError(Exception):
    """Raised when a task's action fails."""

    pass


@dataclass
class _Completion:
    """Completion event a worker reports to the control loop."""

    name: str
    succeeded: bool
    reason: str = ""
    entry: StoreEntry | None = None
    cancelled: bool = False


# Wakes the control loop when the run is cancelled
_CANCEL = object()


def default_jobs() -> int:
    return os.cpu_count() or 1


class Executor:
    """Executes stale tasks in dependency order on a bounded worker pool.

    The control loop runs on the calling thread. Workers only execute actions
    and fingerprint files; they report back through a completion queue, and
    the loop alone updates task states and commits to the fingerprint store.
    """

    def __init__(
        self,
        graph: TaskGraph,
        store: FingerprintStore,
        logger: Logger,
        process_runner_factory: ProcessRunnerFactory = make_process_runner,
        jobs: int | None = None,
        task_output: TaskOutputTypes = TaskOutputTypes.ALL,
        shell_settings: ShellSettings | None = None,
        default_timeout: float | None = None,
        grace_period: float = 5.0,
    ):
        """Initialize executor.

        Args:
            graph: Validated task graph
            store: Fingerprint store, already pointing at the project's store file
            logger: Logger for progress and diagnostics
            process_runner_factory: Builds the ProcessRunner used for shell actions
            jobs: Maximum number of tasks in flight (default: CPU count)
            task_output: What to do with task stdout/stderr
            shell_settings: Shell used for shell actions
            default_timeout: Timeout for tasks that do not declare one
            grace_period: Seconds running tasks get to finish after cancellation
        """
        if jobs is not None and jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")

        self.graph = graph
        self.store = store
        self.logger = logger
        self.process_runner_factory = process_runner_factory
        self.jobs = jobs or default_jobs()
        self.task_output = task_output
        self.shell_settings = shell_settings or ShellSettings()
        self.default_timeout = default_timeout
        self.grace_period = grace_period
        self.project_root = graph.project_root or Path.cwd()

        self._cancel_event = threading.Event()
        self._events: queue.Queue = queue.Queue()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop dispatching new tasks. Safe to call from any thread."""
        if not self._cancel_event.is_set():
            self._cancel_event.set()
            self._events.put(_CANCEL)

    def plan(
        self, targets: Iterable[str] | None = None, force: bool = False
    ) -> dict[str, TaskStatus]:
        """Classify the tasks a run would consider, without executing anything.

        Raises:
            TaskNotFoundError: If a target is not in the graph
        """
        graph = self._select(targets)
        return classify_graph(graph, self.store, self.project_root, self.logger, force=force)

    def run(
        self,
        targets: Iterable[str] | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> RunReport:
        """Bring the targets (or the whole graph) up to date.

        Args:
            targets: Task names to run together with their dependencies; all
                tasks when None or empty
            force: Treat every task as stale
            dry_run: Classify only; execute nothing and commit nothing

        Returns:
            RunReport with one outcome per considered task

        Raises:
            TaskNotFoundError: If a target is not in the graph
        """
        graph = self._select(targets)
        started_at = time.monotonic()

        statuses = classify_graph(graph, self.store, self.project_root, self.logger, force=force)
        outcomes = {name: TaskOutcome(name=name) for name in graph.order}
        classified_at = time.monotonic()

        for name, status in statuses.items():
            outcome = outcomes[name]
            if status.will_run:
                outcome.state = TaskState.STALE
                outcome.reason = _describe(status)
            else:
                outcome.state = TaskState.UP_TO_DATE
                outcome.finished_at = classified_at

        if dry_run:
            for name in graph.topological_order():
                if outcomes[name].state == TaskState.STALE:
                    self.logger.info(f"Would run: {name} ({outcomes[name].reason})")
            return RunReport(
                status=RunStatus.SUCCEEDED,
                outcomes=outcomes,
                started_at=started_at,
                finished_at=time.monotonic(),
                dry_run=True,
            )

        self._schedule(graph, statuses, outcomes)

        if self.cancelled:
            for outcome in outcomes.values():
                if outcome.state in (TaskState.STALE, TaskState.RUNNING):
                    outcome.state = TaskState.PENDING
                    outcome.reason = "cancelled"
            status = RunStatus.CANCELLED
        elif any(o.state == TaskState.FAILED for o in outcomes.values()):
            status = RunStatus.FAILED
        else:
            status = RunStatus.SUCCEEDED

        return RunReport(
            status=status,
            outcomes=outcomes,
            started_at=started_at,
            finished_at=time.monotonic(),
        )

    def _select(self, targets: Iterable[str] | None) -> TaskGraph:
        names = list(targets or [])
        if not names:
            return self.graph
        return subgraph_reachable_from(self.graph, names)

    def _schedule(
        self,
        graph: TaskGraph,
        statuses: dict[str, TaskStatus],
        outcomes: dict[str, TaskOutcome],
    ) -> None:
        """Control loop: dispatch ready tasks and react to completion events."""
        # UpToDate dependencies are already satisfied
        remaining = {
            name: sum(
                1
                for dep in graph.dependencies_of(name)
                if outcomes[dep].state != TaskState.UP_TO_DATE
            )
            for name in graph.order
            if outcomes[name].state == TaskState.STALE
        }
        ready: list[tuple[int, str]] = [
            (graph.index_of(name), name) for name, count in remaining.items() if count == 0
        ]
        heapq.heapify(ready)
        in_flight: set[str] = set()

        self.logger.debug(
            f"Scheduling {len(remaining)} stale task(s) with up to {self.jobs} in flight"
        )

        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="tessy-worker") as pool:
            while True:
                while ready and len(in_flight) < self.jobs and not self.cancelled:
                    _, name = heapq.heappop(ready)
                    status = statuses[name]

                    if status.error is not None:
                        self._fail(graph, outcomes, name, f"I/O error: {status.error}")
                        continue

                    outcomes[name].state = TaskState.RUNNING
                    outcomes[name].started_at = time.monotonic()
                    self.logger.info(f"Running: {name}")

                    future = pool.submit(self._execute, graph.task(name))
                    future.add_done_callback(
                        lambda f, name=name: self._events.put(_completion_of(name, f))
                    )
                    in_flight.add(name)

                if not in_flight:
                    break

                event = self._events.get()
                if event is _CANCEL:
                    self.logger.warn(
                        f"[yellow]Cancelling run; waiting for {len(in_flight)} running task(s)[/yellow]"
                    )
                    continue

                in_flight.discard(event.name)
                self._complete(graph, outcomes, event, ready, remaining)

    def _complete(
        self,
        graph: TaskGraph,
        outcomes: dict[str, TaskOutcome],
        event: _Completion,
        ready: list[tuple[int, str]],
        remaining: dict[str, int],
    ) -> None:
        name = event.name
        outcome = outcomes[name]

        if event.cancelled:
            self.logger.trace(f"Task '{name}' was interrupted by cancellation")
            outcome.state = TaskState.PENDING
            outcome.reason = "cancelled"
            return

        if not event.succeeded:
            self._fail(graph, outcomes, name, event.reason)
            return

        # Commit before any dependent can become ready
        try:
            self.store.commit(name, event.entry)
        except OSError as e:
            self._fail(graph, outcomes, name, f"could not record fingerprints: {e}")
            return

        outcome.state = TaskState.SUCCEEDED
        outcome.finished_at = time.monotonic()
        self.logger.debug(f"Task '{name}' succeeded in {outcome.duration:.2f}s")

        for dependent in graph.dependents_of(name):
            if outcomes[dependent].state != TaskState.STALE:
                continue
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, (graph.index_of(dependent), dependent))

    def _fail(
        self,
        graph: TaskGraph,
        outcomes: dict[str, TaskOutcome],
        name: str,
        reason: str,
    ) -> None:
        """Mark a task failed and skip everything downstream of it."""
        now = time.monotonic()
        outcome = outcomes[name]
        outcome.state = TaskState.FAILED
        outcome.reason = reason
        outcome.finished_at = now
        self.logger.error(f"[red]Task '{name}' failed: {reason}[/red]")

        pending = list(graph.dependents_of(name))
        while pending:
            dependent = pending.pop()
            dependent_outcome = outcomes[dependent]
            if dependent_outcome.state != TaskState.STALE:
                continue
            dependent_outcome.state = TaskState.SKIPPED
            dependent_outcome.upstream = name
            dependent_outcome.finished_at = now
            self.logger.debug(f"Skipping '{dependent}' because '{name}' failed")
            pending.extend(graph.dependents_of(dependent))

    def _execute(self, task: Task) -> _Completion:
        """Worker entry point."""
        try:
            entry = self._run_task(task)
        except ProcessCancelledError:
            return _Completion(name=task.name, succeeded=False, reason="cancelled", cancelled=True)
        except ExecutionError as e:
            return _Completion(name=task.name, succeeded=False, reason=str(e))
        return _Completion(name=task.name, succeeded=True, entry=entry)

    def _run_task(self, task: Task) -> StoreEntry:
        """Run a task's action and fingerprint the result.

        Inputs are fingerprinted before the action runs, outputs after.

        Raises:
            ExecutionError: If the action fails, times out or does not produce
                its declared outputs
            ProcessCancelledError: If the run was cancelled and the process killed
        """
        try:
            inputs = snapshot_inputs(task, self.project_root)
        except OSError as e:
            raise ExecutionError(f"I/O error: {e}") from e

        timeout = task.timeout if task.timeout is not None else self.default_timeout
        runner = self.process_runner_factory(self.task_output, self.logger, self.grace_period)

        try:
            exit_code = execute_action(
                task.action,
                task_base_dir(task, self.project_root),
                self.logger,
                runner,
                shell_settings=self.shell_settings,
                timeout=timeout,
                cancel_event=self._cancel_event,
            )
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"timed out after {timeout:g}s") from e
        except OSError as e:
            raise ExecutionError(str(e)) from e

        if exit_code != 0:
            raise ExecutionError(f"exit code {exit_code}")

        try:
            outputs = snapshot_outputs(task, self.project_root)
        except OSError as e:
            raise ExecutionError(f"I/O error: {e}") from e

        missing = [path for path, fingerprint in outputs.items() if fingerprint is None]
        if missing:
            raise ExecutionError(f"declared output '{missing[0]}' was not produced")

        return StoreEntry(
            action_hash=task_signature(task),
            inputs=inputs,
            outputs=outputs,
            completed_at=time.time(),
            exit_status=exit_code,
        )


def _completion_of(name: str, future: Future) -> _Completion:
    error = future.exception()
    if error is not None:
        return _Completion(name=name, succeeded=False, reason=f"{type(error).__name__}: {error}")
    return future.result()


def _describe(status: TaskStatus) -> str:
    if status.error:
        return f"{status.reason}: {status.error}"
    if status.changed_files:
        return f"{status.reason} ({', '.join(status.changed_files)})"
    return status.reason
