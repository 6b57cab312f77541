"""Command-line interface for tessy."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console

from tessy import __version__
from tessy.cli_commands.clean_state import clean_state
from tessy.cli_commands.list_tasks import list_tasks
from tessy.cli_commands.run_tasks import run_tasks
from tessy.cli_commands.show_tree import show_tree
from tessy.console_logger import ConsoleLogger
from tessy.logging import parse_log_level
from tessy.report import EXIT_DEFINITION_ERROR

app = typer.Typer(
    help="tessy - an incremental task runner that only rebuilds what changed",
    add_completion=False,
    no_args_is_help=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.command()
def run(
    task_names: Optional[List[str]] = typer.Argument(
        None, metavar="[TASK]...", help="Tasks to bring up to date (default: all tasks)"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Run every selected task regardless of fingerprints"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would run without executing anything"),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", min=1, help="Maximum number of tasks run in parallel"),
    log_level: str = typer.Option("info", "--log-level", "-L", help="fatal, error, warn, info, debug or trace"),
    task_output: Optional[str] = typer.Option(None, "--task-output", "-O", help="Task output to show: all, out, err or none"),
    tasks_file: Optional[str] = typer.Option(None, "--tasks", "-T", help="Path to the task file"),
    grace_period: Optional[float] = typer.Option(None, "--grace-period", min=0, help="Seconds running tasks get to finish after Ctrl-C"),
    list_opt: bool = typer.Option(False, "--list", "-l", help="List all tasks"),
    tree: Optional[str] = typer.Option(None, "--tree", metavar="TASK", help="Show the dependency tree of a task"),
    clean: bool = typer.Option(False, "--clean-state", help="Remove the fingerprint store"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
):
    """
    Bring tasks up to date, running only those whose inputs, outputs or definitions changed.

    Exit codes: 0 success, 1 a task failed, 2 invalid task definitions, 3 cancelled.
    """
    console = Console()

    try:
        level = parse_log_level(log_level)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)

    logger = ConsoleLogger(console, level)

    if version:
        logger.info(f"tessy version {__version__}")
        return

    if list_opt:
        list_tasks(logger, tasks_file)
        return

    if tree is not None:
        show_tree(logger, tree, tasks_file)
        return

    if clean:
        clean_state(logger, tasks_file)
        return

    report = run_tasks(
        logger,
        task_names or [],
        force=force,
        dry_run=dry_run,
        jobs=jobs,
        tasks_file=tasks_file,
        task_output=task_output,
        grace_period=grace_period,
    )
    raise typer.Exit(report.exit_code)


def main():
    app()


if __name__ == "__main__":
    main()
