from __future__ import annotations

from typing import Optional

import typer
from rich.markup import escape
from rich.tree import Tree

from tessy.cli_commands import load_graph, load_project_settings, load_recipe
from tessy.executor import Executor
from tessy.graph import TaskNotFoundError, build_dependency_tree
from tessy.logging import Logger
from tessy.report import EXIT_DEFINITION_ERROR
from tessy.staleness import TaskStatus
from tessy.state import FingerprintStore


def show_tree(logger: Logger, task_name: str, tasks_file: Optional[str] = None):
    """
    Show the dependency tree of a task, coloured by staleness.
    """
    recipe = load_recipe(logger, tasks_file)
    settings = load_project_settings(logger, recipe)
    graph = load_graph(logger, recipe)

    try:
        dep_tree = build_dependency_tree(graph, task_name)
    except TaskNotFoundError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)

    store = FingerprintStore(recipe.project_root, logger, settings.store_path)
    store.load()
    statuses = Executor(graph, store, logger, jobs=1).plan([task_name])

    logger.info(_build_rich_tree(dep_tree, statuses))


def _build_rich_tree(dep_tree: dict, statuses: dict[str, TaskStatus]) -> Tree:
    """
    Build a Rich Tree from a dependency tree and the planned statuses.

    Args:
        dep_tree: Nested dictionary representing task dependencies
        statuses: Staleness of each task in the tree

    Returns:
        Rich Tree for display
    """
    task_name = dep_tree["name"]
    status = statuses.get(task_name)

    if status is None:
        color, label = "white", task_name
    elif not status.will_run:
        color, label = "green", f"{task_name} (fresh)"
    elif status.reason == "dependency_triggered":
        color, label = "yellow", f"{task_name} (triggered by dependency)"
    else:
        color, label = "red", f"{task_name} (stale: {status.reason})"

    tree = Tree(f"[{color}]{escape(label)}[/{color}]")
    for dep in dep_tree.get("deps", []):
        tree.add(_build_rich_tree(dep, statuses))
    return tree
