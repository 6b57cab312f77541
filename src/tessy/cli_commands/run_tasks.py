"""Run command implementation."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import typer

from tessy.cli_commands import (
    get_action_failure_string,
    get_action_success_string,
    load_graph,
    load_project_settings,
    load_recipe,
)
from tessy.executor import Executor
from tessy.graph import TaskNotFoundError
from tessy.logging import Logger
from tessy.process_runner import TaskOutputTypes, make_process_runner
from tessy.report import EXIT_DEFINITION_ERROR, RunReport, RunStatus
from tessy.state import FingerprintStore


def run_tasks(
    logger: Logger,
    task_names: list[str],
    force: bool = False,
    dry_run: bool = False,
    jobs: Optional[int] = None,
    tasks_file: Optional[str] = None,
    task_output: Optional[str] = None,
    grace_period: Optional[float] = None,
) -> RunReport:
    """
    Bring the named tasks (all tasks when none are named) up to date.

    Args:
    logger: Logger interface for output
    task_names: Tasks to run together with their dependencies
    force: Treat every task as stale
    dry_run: Classify tasks but execute and record nothing
    jobs: Maximum tasks in flight (overrides config and TESSY_JOBS)
    tasks_file: Path to the task file (optional)
    task_output: Control task subprocess output (all, out, err, none)
    grace_period: Seconds running tasks get to finish after cancellation

    Raises:
    typer.Exit: With the definition error code if nothing could be run
    """
    recipe = load_recipe(logger, tasks_file)
    settings = load_project_settings(logger, recipe)
    graph = load_graph(logger, recipe)

    if task_output is not None:
        try:
            settings.task_output = TaskOutputTypes(task_output.lower())
        except ValueError:
            logger.error(f"[red]Invalid task output mode: {task_output}[/red]")
            raise typer.Exit(EXIT_DEFINITION_ERROR)

    store = FingerprintStore(recipe.project_root, logger, settings.store_path)
    store.load()
    if not dry_run and store.prune(graph.order):
        store.save()

    executor = Executor(
        graph,
        store,
        logger,
        make_process_runner,
        jobs=jobs or settings.jobs,
        task_output=settings.task_output,
        shell_settings=settings.shell,
        default_timeout=settings.timeout,
        grace_period=grace_period if grace_period is not None else settings.grace_period,
    )

    with _cancel_on_signals(executor):
        try:
            report = executor.run(task_names, force=force, dry_run=dry_run)
        except TaskNotFoundError as e:
            logger.error(f"[red]{e}[/red]")
            logger.info("\nAvailable tasks:")
            for name in graph.order:
                logger.info(f"  - {name}")
            raise typer.Exit(EXIT_DEFINITION_ERROR)

    _print_report(logger, report)
    return report


def _print_report(logger: Logger, report: RunReport) -> None:
    logger.info(report.to_table())

    match report.status:
        case RunStatus.SUCCEEDED:
            logger.info(f"[green]{get_action_success_string()} {report.summary()}[/green]")
        case RunStatus.FAILED:
            logger.error(f"[red]{get_action_failure_string()} {report.summary()}[/red]")
        case RunStatus.CANCELLED:
            logger.warn(f"[yellow]{get_action_failure_string()} {report.summary()}[/yellow]")


@contextmanager
def _cancel_on_signals(executor: Executor) -> Iterator[None]:
    """Route SIGINT/SIGTERM to executor.cancel() while the run is in progress."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        # The completion queue's lock is not reentrant; cancel from another thread
        threading.Thread(target=executor.cancel, name="tessy-cancel", daemon=True).start()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, old_handler in previous.items():
            signal.signal(sig, old_handler)
