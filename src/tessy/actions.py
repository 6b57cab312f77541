"""Task actions: the closed set of things a task can do.

Every action can be fingerprinted (``canonical()``) and executed
(``execute_action()``), and execution always produces an exit status.
"""

from __future__ import annotations

import enum
import platform
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from tessy.logging import Logger
from tessy.process_runner import ProcessRunner
from tessy.temp_script import TempScript

_IS_WINDOWS = platform.system() == "Windows"


class BuiltinOp(enum.Enum):
    """Built-in operations that run inside the engine process."""

    NOOP = "noop"
    TOUCH = "touch"
    MKDIR = "mkdir"


@dataclass(frozen=True)
class ShellAction:
    """Run a command through the configured shell."""

    cmd: str

    def canonical(self) -> dict[str, Any]:
        return {"kind": "shell", "cmd": self.cmd}

    def describe(self) -> str:
        first_line = self.cmd.strip().splitlines()[0] if self.cmd.strip() else ""
        return first_line


@dataclass(frozen=True)
class BuiltinAction:
    """Run a built-in operation over a list of paths."""

    op: BuiltinOp
    paths: tuple[str, ...] = ()

    def canonical(self) -> dict[str, Any]:
        return {"kind": "builtin", "op": self.op.value, "paths": list(self.paths)}

    def describe(self) -> str:
        return " ".join([self.op.value, *self.paths])


Action = Union[ShellAction, BuiltinAction]


@dataclass
class ShellSettings:
    """Shell used for ShellAction commands."""

    shell: str = ""
    args: list[str] = field(default_factory=list)
    preamble: str = ""

    def resolve(self) -> tuple[str, list[str]]:
        """Return the shell and its arguments, falling back to the platform default."""
        default_args = ["/c"] if _IS_WINDOWS else ["-c"]
        if self.shell:
            return self.shell, list(self.args) or default_args
        return ("cmd" if _IS_WINDOWS else "bash"), default_args


def execute_action(
    action: Action,
    working_dir: Path,
    logger: Logger,
    runner: ProcessRunner,
    shell_settings: ShellSettings | None = None,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Execute an action and return its exit status.

    Raises:
        subprocess.TimeoutExpired: If a shell action exceeds ``timeout``
        ProcessCancelledError: If the run was cancelled and the process killed
        OSError: If a built-in operation fails on the filesystem
    """
    match action:
        case ShellAction():
            return _run_shell(
                action,
                working_dir,
                logger,
                runner,
                shell_settings or ShellSettings(),
                timeout,
                cancel_event,
            )
        case BuiltinAction():
            return _run_builtin(action, working_dir, logger)
        case _:
            raise TypeError(f"Unsupported action: {action!r}")


def _run_shell(
    action: ShellAction,
    working_dir: Path,
    logger: Logger,
    runner: ProcessRunner,
    settings: ShellSettings,
    timeout: float | None,
    cancel_event: threading.Event | None,
) -> int:
    shell, shell_args = settings.resolve()

    if "\n" not in action.cmd.strip() and not settings.preamble:
        logger.trace(f"Running single-line command with {shell}: {action.cmd}")
        return runner.run(
            [shell, *shell_args, action.cmd],
            cwd=working_dir,
            timeout=timeout,
            cancel_event=cancel_event,
        )

    with TempScript(logger, action.cmd, settings.preamble, shell) as script_path:
        cmd = [str(script_path)] if _IS_WINDOWS else [shell, str(script_path)]
        return runner.run(
            cmd,
            cwd=working_dir,
            timeout=timeout,
            cancel_event=cancel_event,
        )


def _run_builtin(action: BuiltinAction, working_dir: Path, logger: Logger) -> int:
    match action.op:
        case BuiltinOp.NOOP:
            pass
        case BuiltinOp.TOUCH:
            for rel in action.paths:
                path = working_dir / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                logger.trace(f"Touched {path}")
        case BuiltinOp.MKDIR:
            for rel in action.paths:
                (working_dir / rel).mkdir(parents=True, exist_ok=True)
                logger.trace(f"Created directory {working_dir / rel}")
    return 0


def parse_builtin_op(name: str) -> BuiltinOp:
    """Look up a built-in operation by name.

    Raises:
        ValueError: If the name is not a supported operation
    """
    try:
        return BuiltinOp(name)
    except ValueError:
        valid = ", ".join(op.value for op in BuiltinOp)
        raise ValueError(f"Unknown builtin operation '{name}' (expected one of: {valid})")
