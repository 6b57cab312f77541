from __future__ import annotations

from typing import Optional

from rich.table import Table

from tessy.cli_commands import load_recipe
from tessy.logging import Logger


def list_tasks(logger: Logger, tasks_file: Optional[str] = None):
    """
    List all tasks in declaration order with their dependencies and descriptions.
    """
    recipe = load_recipe(logger, tasks_file)

    names = recipe.task_names()
    max_task_name_len = max((len(name) for name in names), default=0)

    # Borderless table: name, dependencies, description
    table = Table(show_edge=False, show_header=False, box=None, padding=(0, 2))
    table.add_column("Task", style="bold cyan", no_wrap=True, width=max_task_name_len)
    table.add_column("Depends on", style="dim", max_width=60)
    table.add_column("Description", style="white", max_width=80)

    for name in names:
        task = recipe.get_task(name)
        deps = ", ".join(task.deps) if task.deps else ""
        table.add_row(name, deps, task.desc)

    logger.info(table)
