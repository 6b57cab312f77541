"""CLI command implementations and shared utilities."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer

from tessy.config import ConfigError, Settings, load_settings
from tessy.graph import CycleError, TaskGraph, build_graph
from tessy.logging import Logger
from tessy.parser import DefinitionError, Recipe, find_recipe_file, parse_recipe
from tessy.report import EXIT_DEFINITION_ERROR

NO_RECIPE_MESSAGE = "[red]No task file found (tessy.yaml, tessy.yml or tasks.yaml)[/red]"


def _supports_unicode() -> bool:
    """
    Check if the terminal supports Unicode characters.
    """
    # Classic Windows console (conhost)
    if os.name == "nt" and "WT_SESSION" not in os.environ:
        return False

    encoding = sys.stdout.encoding
    if not encoding:
        return False

    try:
        "✓✗".encode(encoding)
        return True
    except UnicodeEncodeError:
        return False


def get_action_success_string() -> str:
    return "✓" if _supports_unicode() else "[ OK ]"


def get_action_failure_string() -> str:
    return "✗" if _supports_unicode() else "[ FAIL ]"


def load_recipe(logger: Logger, tasks_file: Optional[str] = None) -> Recipe:
    """
    Locate and parse the task file, exiting with the definition error code on failure.
    """
    if tasks_file:
        recipe_path = Path(tasks_file)
        if not recipe_path.exists():
            logger.error(f"[red]Task file not found: {tasks_file}[/red]")
            raise typer.Exit(EXIT_DEFINITION_ERROR)
    else:
        recipe_path = find_recipe_file()
        if recipe_path is None:
            logger.error(NO_RECIPE_MESSAGE)
            raise typer.Exit(EXIT_DEFINITION_ERROR)

    try:
        return parse_recipe(recipe_path)
    except DefinitionError as e:
        logger.error(f"[red]Error in task file: {e}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)


def load_project_settings(logger: Logger, recipe: Recipe) -> Settings:
    try:
        return load_settings(recipe.project_root, logger)
    except ConfigError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)


def load_graph(logger: Logger, recipe: Recipe) -> TaskGraph:
    """
    Build the task graph, reporting cycles and definition errors before anything runs.
    """
    try:
        return build_graph(recipe.tasks.values(), recipe.project_root)
    except CycleError as e:
        logger.fatal(f"[red]Dependency cycle detected: {' -> '.join(e.path)}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)
    except DefinitionError as e:
        logger.fatal(f"[red]Invalid task definitions: {e}[/red]")
        raise typer.Exit(EXIT_DEFINITION_ERROR)
