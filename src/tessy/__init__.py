"""tessy - an incremental task runner that only rebuilds what changed."""

__version__ = "0.1.0"

from tessy.executor import ExecutionError, Executor
from tessy.graph import (
    CycleError,
    TaskGraph,
    TaskNotFoundError,
    build_dependency_tree,
    build_graph,
    subgraph_reachable_from,
    topological_layers,
)
from tessy.hasher import FileFingerprint, fingerprint_path, hash_task
from tessy.parser import DefinitionError, Recipe, Task, find_recipe_file, parse_recipe
from tessy.report import RunReport, RunStatus, TaskOutcome, TaskState
from tessy.staleness import TaskStatus, classify
from tessy.state import FingerprintStore, StoreEntry

__all__ = [
    "__version__",
    "Executor",
    "ExecutionError",
    "CycleError",
    "TaskGraph",
    "TaskNotFoundError",
    "build_dependency_tree",
    "build_graph",
    "subgraph_reachable_from",
    "topological_layers",
    "FileFingerprint",
    "fingerprint_path",
    "hash_task",
    "DefinitionError",
    "Recipe",
    "Task",
    "find_recipe_file",
    "parse_recipe",
    "RunReport",
    "RunStatus",
    "TaskOutcome",
    "TaskState",
    "TaskStatus",
    "classify",
    "FingerprintStore",
    "StoreEntry",
]
