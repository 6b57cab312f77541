from tessy.logging import Logger, LogLevel


class LoggerStub(Logger):
    """
    Logger that discards everything.
    """

    def log(self, _level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        pass

    def push_level(self, level: LogLevel) -> None:
        pass

    def pop_level(self) -> LogLevel:
        return LogLevel.INFO


class RecordingLogger(Logger):
    """
    Logger that keeps every message with its level, for assertions.
    """

    def __init__(self):
        self.messages: list[tuple[LogLevel, str]] = []

    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        self.messages.append((level, " ".join(str(a) for a in args)))

    def push_level(self, level: LogLevel) -> None:
        pass

    def pop_level(self) -> LogLevel:
        return LogLevel.INFO

    def at(self, level: LogLevel) -> list[str]:
        return [message for lvl, message in self.messages if lvl == level]


logger_stub = LoggerStub()
