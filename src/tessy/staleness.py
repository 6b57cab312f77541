"""Staleness detection: compare a task's observable state with its last success."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from tessy.graph import TaskGraph
from tessy.hasher import FileFingerprint, fingerprint_path, hash_task
from tessy.logging import Logger
from tessy.parser import Task
from tessy.state import FingerprintStore, StoreEntry


@dataclass
class TaskStatus:
    """Status of a task for execution planning."""

    task_name: str
    will_run: bool
    reason: str  # "fresh", "forced", "never_run", "definition_changed", "inputs_changed",
    # "outputs_missing", "outputs_changed", "dependency_triggered", "io_error"
    changed_files: list[str] = field(default_factory=list)
    last_run: datetime | None = None
    error: str | None = None


def task_signature(task: Task) -> str:
    """Signature of the task's action, working directory and declared outputs."""
    return hash_task(task.action.canonical(), task.working_dir, task.outputs)


def task_base_dir(task: Task, project_root: Path) -> Path:
    return project_root / task.working_dir


def snapshot_inputs(task: Task, project_root: Path) -> dict[str, Optional[FileFingerprint]]:
    """Current fingerprints of the task's declared inputs (None when absent).

    Raises:
        OSError: If an input exists but cannot be read
    """
    base = task_base_dir(task, project_root)
    return {path: fingerprint_path(base, path) for path in task.inputs}


def snapshot_outputs(task: Task, project_root: Path) -> dict[str, Optional[FileFingerprint]]:
    """Current fingerprints of the task's declared outputs (None when absent).

    Raises:
        OSError: If an output exists but cannot be read
    """
    base = task_base_dir(task, project_root)
    return {path: fingerprint_path(base, path) for path in task.outputs}


def classify(
    task: Task,
    entry: StoreEntry | None,
    project_root: Path,
    dependency_stale: bool = False,
    force: bool = False,
) -> TaskStatus:
    """Decide whether a task needs to run.

    A task is stale if ANY of these hold:
    1. Force mode is on
    2. No store entry exists
    3. The action signature differs from the stored one
    4. A dependency is stale (it will run, so our inputs will change)
    5. An input appeared, disappeared or changed content
    6. An output is missing or differs from what the task last produced

    The result depends only on the arguments and the filesystem.

    Args:
        task: Task to check
        entry: Store entry from the task's last success, if any
        project_root: Root directory that working directories are relative to
        dependency_stale: True if any dependency is stale in this run
        force: If True, ignore freshness

    Returns:
        TaskStatus indicating whether the task will run and why
    """
    if force:
        return TaskStatus(task_name=task.name, will_run=True, reason="forced")

    if entry is None:
        return TaskStatus(task_name=task.name, will_run=True, reason="never_run")

    last_run = datetime.fromtimestamp(entry.completed_at)

    if entry.action_hash != task_signature(task):
        return TaskStatus(
            task_name=task.name,
            will_run=True,
            reason="definition_changed",
            last_run=last_run,
        )

    if dependency_stale:
        return TaskStatus(
            task_name=task.name,
            will_run=True,
            reason="dependency_triggered",
            last_run=last_run,
        )

    try:
        changed_inputs = _changed_inputs(task, entry, project_root)
        if changed_inputs:
            return TaskStatus(
                task_name=task.name,
                will_run=True,
                reason="inputs_changed",
                changed_files=changed_inputs,
                last_run=last_run,
            )

        missing, changed_outputs = _check_outputs(task, entry, project_root)
    except OSError as e:
        return TaskStatus(
            task_name=task.name,
            will_run=True,
            reason="io_error",
            last_run=last_run,
            error=str(e),
        )

    if missing:
        return TaskStatus(
            task_name=task.name,
            will_run=True,
            reason="outputs_missing",
            changed_files=missing,
            last_run=last_run,
        )

    if changed_outputs:
        return TaskStatus(
            task_name=task.name,
            will_run=True,
            reason="outputs_changed",
            changed_files=changed_outputs,
            last_run=last_run,
        )

    return TaskStatus(
        task_name=task.name,
        will_run=False,
        reason="fresh",
        last_run=last_run,
    )


def _changed_inputs(task: Task, entry: StoreEntry, project_root: Path) -> list[str]:
    current = snapshot_inputs(task, project_root)
    changed = []
    for path, fingerprint in current.items():
        if path not in entry.inputs or entry.inputs[path] != fingerprint:
            changed.append(path)
    # Inputs that were dropped from the definition also count as a change
    changed.extend(path for path in entry.inputs if path not in current)
    return changed


def _check_outputs(
    task: Task, entry: StoreEntry, project_root: Path
) -> tuple[list[str], list[str]]:
    missing = []
    changed = []
    for path, fingerprint in snapshot_outputs(task, project_root).items():
        if fingerprint is None:
            missing.append(path)
        elif entry.outputs.get(path) != fingerprint:
            changed.append(path)
    return missing, changed


def classify_graph(
    graph: TaskGraph,
    store: FingerprintStore,
    project_root: Path,
    logger: Logger,
    force: bool = False,
) -> dict[str, TaskStatus]:
    """Classify every task in the graph, dependencies first.

    A task with a stale dependency is itself stale.
    """
    statuses: dict[str, TaskStatus] = {}
    for name in graph.topological_order():
        task = graph.task(name)
        dependency_stale = any(
            statuses[dep].will_run for dep in graph.dependencies_of(name)
        )
        status = classify(
            task,
            store.get(name),
            project_root,
            dependency_stale=dependency_stale,
            force=force,
        )
        statuses[name] = status

        if status.will_run:
            detail = f" ({', '.join(status.changed_files)})" if status.changed_files else ""
            logger.debug(f"Task '{name}' is stale: {status.reason}{detail}")
        else:
            logger.debug(f"Task '{name}' is up to date")
    return statuses
