"""
Layered configuration: machine, user and project config files, then environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs
import yaml

from tessy.actions import ShellSettings
from tessy.logging import Logger
from tessy.process_runner import TaskOutputTypes

__all__ = [
    "Settings",
    "ConfigError",
    "get_user_config_path",
    "get_machine_config_path",
    "find_project_config",
    "parse_config_file",
    "load_settings",
]

PROJECT_CONFIG_FILE = ".tessy-config.yml"

_KNOWN_KEYS = {
    "jobs",
    "store_path",
    "task_output",
    "grace_period",
    "timeout",
    "shell",
    "shell_args",
    "preamble",
}


class ConfigError(Exception):
    """
    Raised when a configuration file or override is invalid.
    """

    pass


@dataclass
class Settings:
    """Effective engine settings after all layers are merged."""

    jobs: Optional[int] = None
    store_path: Optional[str] = None
    task_output: TaskOutputTypes = TaskOutputTypes.ALL
    grace_period: float = 5.0
    timeout: Optional[float] = None
    shell: ShellSettings = field(default_factory=ShellSettings)


def get_machine_config_path() -> Path:
    """
    Get the path to the machine-level (system-wide) configuration file.

    Uses platformdirs to determine the site config directory for the current
    platform, then appends 'tessy/config.yml'.
    """
    return Path(platformdirs.site_config_dir("tessy")) / "config.yml"


def get_user_config_path() -> Path:
    """
    Get the path to the user-level configuration file.
    """
    return Path(platformdirs.user_config_dir("tessy")) / "config.yml"


def find_project_config(start_dir: Path) -> Optional[Path]:
    """
    Walk up the directory tree from start_dir to find .tessy-config.yml.

    Returns:
        Path to the config file if found, None otherwise
    """
    try:
        current = start_dir.resolve()
    except (OSError, RuntimeError):
        # resolve() can fail on invalid paths or symlink loops
        return None

    while True:
        config_path = current / PROJECT_CONFIG_FILE
        try:
            if config_path.exists():
                return config_path
        except OSError:
            # Unreadable directory; keep walking up
            pass

        parent = current.parent
        if parent == current:
            return None
        current = parent


def parse_config_file(path: Path) -> dict[str, Any]:
    """
    Parse and validate one configuration file.

    Empty or missing files are valid and yield no settings.

    Args:
        path: Path to the configuration file

    Returns:
        Validated mapping containing only the keys the file sets

    Raises:
        ConfigError: If the file is unreadable, not YAML, or has invalid values

    Config File Example (.tessy-config.yml):
        ```yaml
        jobs: 4
        task_output: err
        grace_period: 10
        shell: /bin/bash
        shell_args: [-c]
        preamble: set -euo pipefail
        ```
    """
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Error reading config file '{path}': {e}") from e

    if not content.strip():
        return {}

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in config file '{path}': {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Error in config file '{path}': top level must be a dictionary")

    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(
            f"Error in config file '{path}': unknown key(s): {', '.join(sorted(unknown))}"
        )

    return {key: _validate(key, value, str(path)) for key, value in data.items()}


def _validate(key: str, value: Any, source: str) -> Any:
    def fail(expected: str) -> ConfigError:
        return ConfigError(f"Error in {source}: Field '{key}' must be {expected}")

    match key:
        case "jobs":
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise fail("a positive integer")
            return value
        case "grace_period":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise fail("a non-negative number")
            return float(value)
        case "timeout":
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise fail("a positive number")
            return float(value)
        case "task_output":
            try:
                return TaskOutputTypes(str(value).lower())
            except ValueError:
                raise fail("one of: " + ", ".join(t.value for t in TaskOutputTypes))
        case "shell_args":
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise fail("a list of strings")
            return list(value)
        case _:
            if not isinstance(value, str):
                raise fail("a string")
            return value


def _environment_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    jobs = os.environ.get("TESSY_JOBS")
    if jobs:
        try:
            overrides["jobs"] = _validate("jobs", int(jobs), "TESSY_JOBS")
        except ValueError as e:
            raise ConfigError(f"Error in TESSY_JOBS: '{jobs}' is not an integer") from e

    store_path = os.environ.get("TESSY_STORE_PATH")
    if store_path:
        overrides["store_path"] = store_path

    return overrides


def load_settings(project_root: Path, logger: Logger) -> Settings:
    """
    Merge machine, user and project config files and environment overrides.

    Later layers win key by key.

    Raises:
        ConfigError: If any layer is invalid
    """
    merged: dict[str, Any] = {}

    layers = [get_machine_config_path(), get_user_config_path()]
    project_config = find_project_config(project_root)
    if project_config is not None:
        layers.append(project_config)

    for path in layers:
        values = parse_config_file(path)
        if values:
            logger.debug(f"Loaded config from {path}: {', '.join(sorted(values))}")
        merged.update(values)

    merged.update(_environment_overrides())

    settings = Settings(
        jobs=merged.get("jobs"),
        store_path=merged.get("store_path"),
        timeout=merged.get("timeout"),
        shell=ShellSettings(
            shell=merged.get("shell", ""),
            args=merged.get("shell_args", []),
            preamble=merged.get("preamble", ""),
        ),
    )
    if "task_output" in merged:
        settings.task_output = merged["task_output"]
    if "grace_period" in merged:
        settings.grace_period = merged["grace_period"]
    return settings
