"""Parse task files into plain Task records."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tessy.actions import Action, BuiltinAction, BuiltinOp, ShellAction, parse_builtin_op

RECIPE_FILE_NAMES = ("tessy.yaml", "tessy.yml", "tasks.yaml")


class DefinitionError(Exception):
    """Raised when task definitions are invalid (unknown dependency, duplicate output, bad field)."""

    pass


@dataclass
class Task:
    """Represents a task definition."""

    name: str
    action: Action = field(default_factory=lambda: BuiltinAction(BuiltinOp.NOOP))
    desc: str = ""
    deps: list[str] = field(default_factory=list)
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    working_dir: str = "."
    timeout: float | None = None
    source_file: str = ""  # Track which file defined this task

    def __post_init__(self):
        """Ensure lists are always lists."""
        if isinstance(self.deps, str):
            self.deps = [self.deps]
        if isinstance(self.inputs, str):
            self.inputs = [self.inputs]
        if isinstance(self.outputs, str):
            self.outputs = [self.outputs]
        if not self.working_dir:
            self.working_dir = "."


@dataclass
class Recipe:
    """Represents a parsed task file with all tasks in declaration order."""

    tasks: dict[str, Task]
    project_root: Path

    def get_task(self, name: str) -> Task | None:
        return self.tasks.get(name)

    def task_names(self) -> list[str]:
        """Get all task names."""
        return list(self.tasks.keys())


def find_recipe_file(start_dir: Path | None = None) -> Path | None:
    """Find a task file in the current or parent directories.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to the task file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    while True:
        for filename in RECIPE_FILE_NAMES:
            recipe_path = current / filename
            if recipe_path.exists():
                return recipe_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def parse_recipe(recipe_path: Path) -> Recipe:
    """Parse a task file.

    Args:
        recipe_path: Path to the task file

    Returns:
        Recipe with tasks in the order they were declared

    Raises:
        FileNotFoundError: If the task file doesn't exist
        DefinitionError: If the YAML is invalid or a task is malformed
    """
    if not recipe_path.exists():
        raise FileNotFoundError(f"Task file not found: {recipe_path}")

    try:
        with open(recipe_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Error parsing YAML in '{recipe_path}': {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DefinitionError(f"Task file '{recipe_path}' must contain a mapping")

    # Tasks can be either at root level OR inside a "tasks:" key
    tasks_data = data["tasks"] if "tasks" in data else data
    if tasks_data is None:
        tasks_data = {}
    if not isinstance(tasks_data, dict):
        raise DefinitionError("'tasks' must be a dictionary")

    tasks: dict[str, Task] = {}
    for task_name, task_data in tasks_data.items():
        task_name = str(task_name)
        tasks[task_name] = parse_task(task_name, task_data, str(recipe_path))

    return Recipe(tasks=tasks, project_root=recipe_path.parent.resolve())


def parse_task(name: str, task_data: Any, source_file: str = "") -> Task:
    """Build a Task from its mapping in the task file.

    Raises:
        DefinitionError: If a field has the wrong shape
    """
    if task_data is None:
        task_data = {}
    if not isinstance(task_data, dict):
        raise DefinitionError(f"Task '{name}' must be a dictionary")

    unknown = set(task_data) - {
        "desc", "cmd", "builtin", "deps", "inputs", "outputs", "working_dir", "timeout",
    }
    if unknown:
        raise DefinitionError(
            f"Task '{name}' has unknown field(s): {', '.join(sorted(unknown))}"
        )

    timeout = task_data.get("timeout")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise DefinitionError(f"Task '{name}': 'timeout' must be a positive number")
        timeout = float(timeout)

    working_dir = task_data.get("working_dir", ".")
    if not isinstance(working_dir, str):
        raise DefinitionError(f"Task '{name}': 'working_dir' must be a string")

    desc = task_data.get("desc", "")
    if not isinstance(desc, str):
        raise DefinitionError(f"Task '{name}': 'desc' must be a string")

    return Task(
        name=name,
        action=_parse_action(name, task_data),
        desc=desc,
        deps=_string_list(name, "deps", task_data.get("deps", [])),
        inputs=_string_list(name, "inputs", task_data.get("inputs", [])),
        outputs=_string_list(name, "outputs", task_data.get("outputs", [])),
        working_dir=working_dir,
        timeout=timeout,
        source_file=source_file,
    )


def _parse_action(name: str, task_data: dict[str, Any]) -> Action:
    if "cmd" in task_data and "builtin" in task_data:
        raise DefinitionError(f"Task '{name}' may declare either 'cmd' or 'builtin', not both")

    if "cmd" in task_data:
        cmd = task_data["cmd"]
        if not isinstance(cmd, str) or not cmd.strip():
            raise DefinitionError(f"Task '{name}': 'cmd' must be a non-empty string")
        return ShellAction(cmd=cmd)

    if "builtin" not in task_data:
        # Pure orchestration node
        return BuiltinAction(BuiltinOp.NOOP)

    builtin = task_data["builtin"]
    if isinstance(builtin, str):
        builtin = {"op": builtin}
    if not isinstance(builtin, dict) or "op" not in builtin:
        raise DefinitionError(f"Task '{name}': 'builtin' must be a mapping with an 'op' key")

    try:
        op = parse_builtin_op(str(builtin["op"]))
    except ValueError as e:
        raise DefinitionError(f"Task '{name}': {e}") from e

    paths = _string_list(name, "builtin.paths", builtin.get("paths", []))
    return BuiltinAction(op=op, paths=tuple(paths))


def _string_list(task_name: str, field_name: str, value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DefinitionError(
            f"Task '{task_name}': '{field_name}' must be a string or a list of strings"
        )
    return list(value)
