"""Logging infrastructure for tessy.

Provides the Logger interface that every component receives by injection.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod


class LogLevel(enum.Enum):
    """Log verbosity levels for tessy diagnostic messages.

    Lower numeric values represent higher severity / less verbosity.
    """
    FATAL = 0  # Only unrecoverable errors (cycles, unknown tasks)
    ERROR = 1  # Fatal errors plus task execution failures
    WARN = 2   # Errors plus recoverable problems (corrupt fingerprint store)
    INFO = 3   # Warnings plus normal execution progress (default)
    DEBUG = 4  # Info plus staleness reasons and scheduling decisions
    TRACE = 5  # Debug plus fingerprint store I/O and worker events


class Logger(ABC):
    """Abstract logger with a stack of active levels."""

    @abstractmethod
    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        """Log a message at the given level."""
        ...

    @abstractmethod
    def push_level(self, level: LogLevel) -> None:
        """Temporarily switch to a new log level."""
        ...

    @abstractmethod
    def pop_level(self) -> LogLevel:
        """Return to the previous log level."""
        ...

    def fatal(self, *args, **kwargs) -> None:
        self.log(LogLevel.FATAL, *args, **kwargs)

    def error(self, *args, **kwargs) -> None:
        self.log(LogLevel.ERROR, *args, **kwargs)

    def warn(self, *args, **kwargs) -> None:
        self.log(LogLevel.WARN, *args, **kwargs)

    def info(self, *args, **kwargs) -> None:
        self.log(LogLevel.INFO, *args, **kwargs)

    def debug(self, *args, **kwargs) -> None:
        self.log(LogLevel.DEBUG, *args, **kwargs)

    def trace(self, *args, **kwargs) -> None:
        self.log(LogLevel.TRACE, *args, **kwargs)


def parse_log_level(name: str) -> LogLevel:
    """Convert a level name such as ``"debug"`` into a LogLevel.

    Raises:
        ValueError: If the name is not a known level
    """
    try:
        return LogLevel[name.strip().upper()]
    except KeyError:
        valid = ", ".join(level.name.lower() for level in LogLevel)
        raise ValueError(f"Invalid log level '{name}' (expected one of: {valid})")
