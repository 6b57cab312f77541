"""Process execution abstraction layer.

This module provides an interface for running task subprocesses, allowing for
better testability and dependency injection. Runners honour per-task timeouts
and run cancellation.
"""

import subprocess
import sys
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from threading import Thread
from typing import Any, Callable

__all__ = [
    "ProcessRunner",
    "ProcessCancelledError",
    "PassthroughProcessRunner",
    "SilentProcessRunner",
    "StdoutOnlyProcessRunner",
    "StderrOnlyProcessRunner",
    "TaskOutputTypes",
    "ProcessRunnerFactory",
    "make_process_runner",
    "stream_output",
]

from tessy.logging import Logger

_POLL_INTERVAL_SECS = 0.05
_JOIN_TIMEOUT_SECS = 1.0


class TaskOutputTypes(Enum):
    """
    Enum defining task output control modes.
    """

    ALL = "all"
    NONE = "none"
    OUT = "out"
    ERR = "err"


class ProcessCancelledError(Exception):
    """Raised when a process was killed because the run was cancelled."""

    def __init__(self, cmd: list[str]):
        self.cmd = cmd
        super().__init__(f"Process cancelled: {' '.join(cmd)}")


class ProcessRunner(ABC):
    """
    Abstract interface for running task commands.
    """

    @abstractmethod
    def run(
        self,
        cmd: list[str],
        cwd: Path,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> int:
        """
        Run a command to completion.

        Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Seconds before the process is killed, or None
        cancel_event: When set, the process gets the grace period to finish
            before it is killed

        Returns:
        The process exit code

        Raises:
        subprocess.TimeoutExpired: If timeout is exceeded
        ProcessCancelledError: If the process was killed after cancellation
        """
        ...


def stream_output(pipe: Any, target: Any) -> None:
    """
    Stream output from a pipe to a target stream.

    If the pipe is closed or an error occurs during reading/writing,
    the function returns without raising an exception.

    Args:
        pipe: Input pipe to read from
        target: Output stream to write to
    """
    if pipe:
        try:
            for line in pipe:
                target.write(line)
                target.flush()
        except (OSError, ValueError):
            # Pipe closed, expected when the process is killed
            pass


def _kill(process: subprocess.Popen) -> None:
    process.kill()
    process.wait()


def _wait_for_process(
    process: subprocess.Popen,
    cmd: list[str],
    timeout: float | None,
    cancel_event: threading.Event | None,
    grace_period: float,
    logger: Logger,
) -> int:
    deadline = None if timeout is None else time.monotonic() + timeout
    cancelled_at = None

    while True:
        try:
            return process.wait(timeout=_POLL_INTERVAL_SECS)
        except subprocess.TimeoutExpired:
            pass

        now = time.monotonic()
        if deadline is not None and now >= deadline:
            logger.debug(f"Killing process {process.pid} after {timeout}s timeout")
            _kill(process)
            raise subprocess.TimeoutExpired(cmd, timeout)

        if cancel_event is not None and cancel_event.is_set():
            if cancelled_at is None:
                cancelled_at = now
                logger.debug(
                    f"Run cancelled; process {process.pid} has {grace_period}s to finish"
                )
            if now - cancelled_at >= grace_period:
                logger.debug(f"Killing process {process.pid} after cancellation")
                _kill(process)
                raise ProcessCancelledError(cmd)


class _PopenProcessRunner(ProcessRunner):
    """Shared Popen/wait logic; subclasses choose what happens to stdout and stderr."""

    def __init__(self, logger: Logger, grace_period: float = 5.0) -> None:
        self._logger = logger
        self._grace_period = grace_period

    def _streams(self) -> tuple[Any, Any]:
        """Return the (stdout, stderr) arguments for Popen."""
        return None, None

    def _forward(self, process: subprocess.Popen) -> list[Thread]:
        """Start threads forwarding piped output; none by default."""
        return []

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> int:
        stdout, stderr = self._streams()
        piped = subprocess.PIPE in (stdout, stderr)

        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            stdout=stdout,
            stderr=stderr,
            text=piped,
            bufsize=1 if piped else -1,
        )

        threads = self._forward(process)
        for thread in threads:
            thread.start()

        try:
            return _wait_for_process(
                process, cmd, timeout, cancel_event, self._grace_period, self._logger
            )
        finally:
            for thread in threads:
                thread.join(timeout=_JOIN_TIMEOUT_SECS)
                if thread.is_alive():
                    self._logger.warn(
                        f"Stream thread did not complete within timeout of {_JOIN_TIMEOUT_SECS} seconds"
                    )


class PassthroughProcessRunner(_PopenProcessRunner):
    """
    Process runner whose subprocess inherits stdout and stderr.
    """

    pass


class SilentProcessRunner(_PopenProcessRunner):
    """
    Process runner that suppresses all subprocess output by redirecting to DEVNULL.
    """

    def _streams(self) -> tuple[Any, Any]:
        return subprocess.DEVNULL, subprocess.DEVNULL


class StdoutOnlyProcessRunner(_PopenProcessRunner):
    """
    Process runner that streams stdout while suppressing stderr.

    Uses line buffering so output appears promptly.
    """

    def _streams(self) -> tuple[Any, Any]:
        return subprocess.PIPE, subprocess.DEVNULL

    def _forward(self, process: subprocess.Popen) -> list[Thread]:
        return [
            Thread(
                target=stream_output,
                args=(process.stdout, sys.stdout),
                name="stdout-streamer",
                daemon=True,
            )
        ]


class StderrOnlyProcessRunner(_PopenProcessRunner):
    """
    Process runner that streams stderr while suppressing stdout.
    """

    def _streams(self) -> tuple[Any, Any]:
        return subprocess.DEVNULL, subprocess.PIPE

    def _forward(self, process: subprocess.Popen) -> list[Thread]:
        return [
            Thread(
                target=stream_output,
                args=(process.stderr, sys.stderr),
                name="stderr-streamer",
                daemon=True,
            )
        ]


ProcessRunnerFactory = Callable[[TaskOutputTypes, Logger, float], ProcessRunner]


def make_process_runner(
    output_type: TaskOutputTypes, logger: Logger, grace_period: float = 5.0
) -> ProcessRunner:
    """
    Factory function for creating ProcessRunner instances.

    Args:
    output_type: The type of output control to use
    logger: Logger for diagnostics
    grace_period: Seconds a running process may continue after cancellation

    Returns:
    ProcessRunner: A new ProcessRunner instance

    Raises:
    ValueError: If an invalid TaskOutputTypes value is provided
    """
    match output_type:
        case TaskOutputTypes.ALL:
            return PassthroughProcessRunner(logger, grace_period)
        case TaskOutputTypes.NONE:
            return SilentProcessRunner(logger, grace_period)
        case TaskOutputTypes.OUT:
            return StdoutOnlyProcessRunner(logger, grace_period)
        case TaskOutputTypes.ERR:
            return StderrOnlyProcessRunner(logger, grace_period)
        case _:
            raise ValueError(f"Invalid TaskOutputTypes: {output_type}")
