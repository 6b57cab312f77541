"""
Temporary script files for multi-line shell actions.
"""

import os
import platform
import stat
import tempfile
import types
from pathlib import Path

from tessy.logging import Logger

_IS_WINDOWS = platform.system() == "Windows"


class TempScript:
    """
    Context manager that writes a shell action to a temporary script file.

    The script gets a shebang for the configured shell (POSIX only, and only if
    the command does not already start with one), then the optional preamble,
    then the command itself. The file is removed on exit.

    Usage:
        with TempScript(logger, "echo one\\necho two", shell="bash") as script_path:
            runner.run(["bash", str(script_path)], cwd=project_root)
    """

    def __init__(
        self,
        logger: Logger,
        cmd: str,
        preamble: str = "",
        shell: str = "bash",
    ):
        self.cmd = cmd
        self.preamble = preamble
        self.shell = shell
        self.logger = logger
        self.script_path: Path | None = None

    def __enter__(self) -> Path:
        suffix = ".bat" if _IS_WINDOWS else ".sh"

        with tempfile.NamedTemporaryFile(
            mode="w",
            prefix="tessy-",
            suffix=suffix,
            delete=False,
            encoding="utf-8",
        ) as script_file:
            if not _IS_WINDOWS and not self.cmd.startswith("#!"):
                script_file.write(f"#!/usr/bin/env {self.shell}\n")

            if self.preamble:
                script_file.write(self.preamble)
                if not self.preamble.endswith("\n"):
                    script_file.write("\n")

            script_file.write(self.cmd)
            self.script_path = Path(script_file.name)

        if not _IS_WINDOWS:
            mode = os.stat(self.script_path).st_mode
            os.chmod(self.script_path, mode | stat.S_IEXEC)

        self.logger.trace(f"Created temp script at: {self.script_path}")
        return self.script_path

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """
        Delete the script. Cleanup failures are logged, never raised, so they
        cannot mask an exception from the body.
        """
        if self.script_path:
            try:
                os.unlink(self.script_path)
                self.logger.trace(f"Cleaned up temp script: {self.script_path}")
            except OSError as e:
                self.logger.warn(
                    f"Failed to clean up temp script {self.script_path}: {e}"
                )
