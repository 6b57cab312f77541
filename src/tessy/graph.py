"""Task graph construction, cycle detection and topological layering."""

from __future__ import annotations

import posixpath
from graphlib import TopologicalSorter
from pathlib import Path, PurePath
from typing import Iterable, Mapping

from tessy.parser import DefinitionError, Task

_WHITE, _GRAY, _BLACK = 0, 1, 2


class CycleError(Exception):
    """Raised when a dependency cycle is detected.

    ``path`` lists the tasks on the cycle in dependency order, starting and
    ending with the same task.
    """

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__(f"Dependency cycle detected: {' -> '.join(path)}")


class TaskNotFoundError(DefinitionError):
    """Raised when a requested task doesn't exist."""

    pass


def normalize_path(working_dir: str, path: str) -> str:
    """Project-root-relative POSIX form of a path declared in ``working_dir``."""
    return posixpath.normpath(PurePath(working_dir or ".", path).as_posix())


class TaskGraph:
    """Immutable DAG of tasks.

    ``dependencies_of(a)`` lists the tasks that must succeed before ``a`` may
    start; ``dependents_of(b)`` is the reverse relation.
    """

    def __init__(
        self,
        tasks: Mapping[str, Task],
        dependencies: Mapping[str, list[str]],
        project_root: Path | None = None,
    ):
        self.tasks: dict[str, Task] = dict(tasks)
        self.project_root = project_root
        self._deps: dict[str, tuple[str, ...]] = {
            name: tuple(dependencies.get(name, ())) for name in self.tasks
        }
        self._dependents: dict[str, list[str]] = {name: [] for name in self.tasks}
        for name in self.tasks:
            for dep in self._deps[name]:
                self._dependents[dep].append(name)
        self._index = {name: i for i, name in enumerate(self.tasks)}

    def __contains__(self, name: object) -> bool:
        return name in self.tasks

    def __len__(self) -> int:
        return len(self.tasks)

    @property
    def order(self) -> list[str]:
        """Task names in declaration order."""
        return list(self.tasks)

    def index_of(self, name: str) -> int:
        return self._index[name]

    def task(self, name: str) -> Task:
        return self.tasks[name]

    def dependencies_of(self, name: str) -> tuple[str, ...]:
        return self._deps[name]

    def dependents_of(self, name: str) -> tuple[str, ...]:
        return tuple(self._dependents[name])

    def topological_order(self) -> list[str]:
        """Dependencies first; ties broken by declaration order."""
        ordered = []
        for layer in topological_layers(self):
            ordered.extend(sorted(layer, key=self.index_of))
        return ordered


def build_graph(tasks: Iterable[Task], project_root: Path | None = None) -> TaskGraph:
    """Build and validate a task graph.

    Edges come from declared dependencies and from inputs that match another
    task's declared output.

    Args:
        tasks: Task records in declaration order
        project_root: Root that working directories are relative to

    Returns:
        Validated acyclic TaskGraph

    Raises:
        DefinitionError: Duplicate task name, unknown dependency or two tasks
            producing the same output path
        CycleError: If the dependencies form a cycle
    """
    by_name: dict[str, Task] = {}
    for task in tasks:
        if task.name in by_name:
            raise DefinitionError(f"Duplicate task name: {task.name}")
        by_name[task.name] = task

    producers: dict[str, str] = {}
    for task in by_name.values():
        for output in task.outputs:
            key = normalize_path(task.working_dir, output)
            other = producers.get(key)
            if other is not None and other != task.name:
                raise DefinitionError(
                    f"Output '{key}' is declared by both '{other}' and '{task.name}'"
                )
            producers[key] = task.name

    dependencies: dict[str, list[str]] = {}
    for task in by_name.values():
        deps: list[str] = []
        for dep in task.deps:
            if dep not in by_name:
                raise DefinitionError(
                    f"Task '{task.name}' depends on unknown task '{dep}'"
                )
            if dep not in deps:
                deps.append(dep)

        for input_path in task.inputs:
            producer = producers.get(normalize_path(task.working_dir, input_path))
            if producer is not None and producer != task.name and producer not in deps:
                deps.append(producer)

        dependencies[task.name] = deps

    _check_acyclic(list(by_name), dependencies)
    return TaskGraph(by_name, dependencies, project_root)


def _check_acyclic(order: list[str], dependencies: Mapping[str, list[str]]) -> None:
    """Three-colour depth-first search; raises CycleError on the first back-edge."""
    color = {name: _WHITE for name in order}

    for root in order:
        if color[root] != _WHITE:
            continue

        color[root] = _GRAY
        path = [root]
        stack = [iter(dependencies[root])]

        while stack:
            for dep in stack[-1]:
                if color[dep] == _GRAY:
                    start = path.index(dep)
                    raise CycleError(path[start:] + [dep])
                if color[dep] == _WHITE:
                    color[dep] = _GRAY
                    path.append(dep)
                    stack.append(iter(dependencies[dep]))
                    break
            else:
                color[path.pop()] = _BLACK
                stack.pop()


def topological_layers(graph: TaskGraph) -> list[set[str]]:
    """Group tasks into layers of maximal parallelism.

    Layer k contains exactly the tasks whose dependencies all lie in layers < k.
    """
    sorter = TopologicalSorter({name: graph.dependencies_of(name) for name in graph.order})
    sorter.prepare()

    layers: list[set[str]] = []
    while sorter.is_active():
        ready = sorter.get_ready()
        layers.append(set(ready))
        sorter.done(*ready)
    return layers


def subgraph_reachable_from(graph: TaskGraph, names: Iterable[str]) -> TaskGraph:
    """The named tasks plus all of their transitive dependencies.

    Raises:
        TaskNotFoundError: If a name is not in the graph
    """
    pending = []
    for name in names:
        if name not in graph:
            raise TaskNotFoundError(f"Task not found: {name}")
        pending.append(name)

    needed: set[str] = set()
    while pending:
        name = pending.pop()
        if name in needed:
            continue
        needed.add(name)
        pending.extend(graph.dependencies_of(name))

    tasks = {name: graph.task(name) for name in graph.order if name in needed}
    dependencies = {name: list(graph.dependencies_of(name)) for name in tasks}
    return TaskGraph(tasks, dependencies, graph.project_root)


def build_dependency_tree(graph: TaskGraph, target_task: str) -> dict:
    """Build a tree structure representing dependencies for visualization.

    Args:
        graph: Validated task graph
        target_task: Name of the task to build tree for

    Returns:
        Nested dictionary representing the dependency tree
    """
    if target_task not in graph:
        raise TaskNotFoundError(f"Task not found: {target_task}")

    def build_tree(task_name: str) -> dict:
        return {
            "name": task_name,
            "deps": [build_tree(dep) for dep in graph.dependencies_of(task_name)],
        }

    return build_tree(target_task)
