"""Run report: the outcome of one invocation."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from rich.markup import escape
from rich.table import Table

EXIT_SUCCESS = 0
EXIT_TASK_FAILED = 1
EXIT_DEFINITION_ERROR = 2
EXIT_CANCELLED = 3


class TaskState(enum.Enum):
    """Per-run state of a task."""

    PENDING = "Pending"
    UP_TO_DATE = "UpToDate"
    STALE = "Stale"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class RunStatus(enum.Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


_STATE_STYLES = {
    TaskState.UP_TO_DATE: "green",
    TaskState.SUCCEEDED: "green",
    TaskState.STALE: "yellow",
    TaskState.FAILED: "red",
    TaskState.SKIPPED: "yellow",
    TaskState.PENDING: "dim",
    TaskState.RUNNING: "cyan",
}


@dataclass
class TaskOutcome:
    """Final state of a single task, with timings from time.monotonic()."""

    name: str
    state: TaskState = TaskState.PENDING
    reason: str = ""
    upstream: str | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def executed(self) -> bool:
        return self.state in (TaskState.SUCCEEDED, TaskState.FAILED) and self.started_at is not None

    def status_line(self) -> str:
        match self.state:
            case TaskState.FAILED:
                return f"Failed: {self.reason}"
            case TaskState.SKIPPED:
                return f"Skipped: {self.upstream}"
            case TaskState.STALE:
                return f"Stale: {self.reason}"
            case _:
                return self.state.value


@dataclass
class RunReport:
    """Aggregate outcome of one run; outcomes are kept in declaration order."""

    status: RunStatus
    outcomes: dict[str, TaskOutcome] = field(default_factory=dict)
    started_at: float = 0.0
    finished_at: float = 0.0
    dry_run: bool = False

    @property
    def exit_code(self) -> int:
        match self.status:
            case RunStatus.CANCELLED:
                return EXIT_CANCELLED
            case RunStatus.FAILED:
                return EXIT_TASK_FAILED
            case _:
                return EXIT_SUCCESS

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at

    def tasks_in_state(self, state: TaskState) -> list[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.state == state]

    def executed_tasks(self) -> list[str]:
        """Tasks whose action actually ran, in start order."""
        ran = [outcome for outcome in self.outcomes.values() if outcome.executed]
        return [outcome.name for outcome in sorted(ran, key=lambda o: o.started_at)]

    def status_line(self, name: str) -> str:
        return self.outcomes[name].status_line()

    def summary(self) -> str:
        counts = []
        for state in TaskState:
            count = len(self.tasks_in_state(state))
            if count:
                counts.append(f"{count} {state.value}")
        return f"Run {self.status.value.lower()} in {self.duration:.2f}s ({', '.join(counts) or 'no tasks'})"

    def to_table(self) -> Table:
        """Render one row per task for the console."""
        table = Table(show_edge=False, show_header=False, box=None, padding=(0, 2))
        table.add_column("Task", style="bold cyan", no_wrap=True)
        table.add_column("Status")
        table.add_column("Time", justify="right", style="dim")

        for outcome in self.outcomes.values():
            style = _STATE_STYLES.get(outcome.state, "white")
            duration = f"{outcome.duration:.2f}s" if outcome.executed and outcome.duration is not None else ""
            table.add_row(
                outcome.name,
                f"[{style}]{escape(outcome.status_line())}[/{style}]",
                duration,
            )
        return table
