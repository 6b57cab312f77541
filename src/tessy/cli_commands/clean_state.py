"""Clean state command implementation."""

from __future__ import annotations

from typing import Optional

from tessy.cli_commands import get_action_success_string, load_project_settings, load_recipe
from tessy.logging import Logger
from tessy.state import FingerprintStore


def clean_state(logger: Logger, tasks_file: Optional[str] = None) -> None:
    """
    Remove the fingerprint store so every task runs on the next invocation.
    """
    recipe = load_recipe(logger, tasks_file)
    settings = load_project_settings(logger, recipe)
    store_path = FingerprintStore(recipe.project_root, logger, settings.store_path).store_path

    if store_path.exists():
        store_path.unlink()
        logger.info(f"[green]{get_action_success_string()} Removed {store_path}[/green]")
        logger.info("All tasks will run fresh on next execution")
    else:
        logger.info(f"[yellow]No fingerprint store found at {store_path}[/yellow]")
