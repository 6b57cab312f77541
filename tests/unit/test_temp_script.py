"""
Unit tests for temp_script module.
"""

import os
import platform
import unittest
from unittest.mock import patch

from helpers.logging import RecordingLogger, logger_stub
from tessy.logging import LogLevel
from tessy.temp_script import TempScript

_IS_WINDOWS = platform.system() == "Windows"


class TestTempScript(unittest.TestCase):
    """
    Test TempScript context manager.
    """

    def test_creates_script_with_command(self):
        cmd = "echo one\necho two"

        with TempScript(logger=logger_stub, cmd=cmd) as script_path:
            self.assertTrue(script_path.is_file())
            self.assertTrue(script_path.name.startswith("tessy-"))
            self.assertTrue(str(script_path).endswith(".bat" if _IS_WINDOWS else ".sh"))

            content = script_path.read_text()
            self.assertIn(cmd, content)
            if not _IS_WINDOWS:
                self.assertTrue(content.startswith("#!/usr/bin/env bash\n"))
                self.assertTrue(os.access(script_path, os.X_OK))

    def test_preamble_comes_before_command(self):
        with TempScript(logger_stub, "make all", preamble="set -e", shell="sh") as script_path:
            content = script_path.read_text()

        self.assertLess(content.index("set -e\n"), content.index("make all"))
        if not _IS_WINDOWS:
            self.assertTrue(content.startswith("#!/usr/bin/env sh\n"))

    def test_existing_shebang_is_kept(self):
        cmd = "#!/usr/bin/env python3\nprint('hi')"
        with TempScript(logger_stub, cmd) as script_path:
            self.assertEqual(script_path.read_text(), cmd)

    def test_script_removed_on_exit(self):
        with TempScript(logger_stub, "echo hi") as script_path:
            pass
        self.assertFalse(script_path.exists())

    def test_script_removed_when_body_raises(self):
        with self.assertRaises(RuntimeError):
            with TempScript(logger_stub, "echo hi") as script_path:
                raise RuntimeError("task failed")
        self.assertFalse(script_path.exists())

    def test_cleanup_failure_is_logged(self):
        logger = RecordingLogger()
        with patch("tessy.temp_script.os.unlink", side_effect=OSError("busy")):
            with TempScript(logger, "echo hi") as script_path:
                pass
        os.remove(script_path)
        self.assertEqual(len(logger.at(LogLevel.WARN)), 1)


if __name__ == "__main__":
    unittest.main()
