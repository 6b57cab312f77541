"""Unit tests for process_runner module."""

import subprocess
import sys
import threading
import time
import unittest
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory

from helpers.logging import logger_stub
from tessy.process_runner import (
    PassthroughProcessRunner,
    ProcessCancelledError,
    ProcessRunner,
    SilentProcessRunner,
    StderrOnlyProcessRunner,
    StdoutOnlyProcessRunner,
    TaskOutputTypes,
    make_process_runner,
    stream_output,
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


class TestProcessRunner(unittest.TestCase):
    def test_process_runner_is_abstract(self):
        """
        ProcessRunner cannot be instantiated directly.
        """
        with self.assertRaises(TypeError):
            ProcessRunner()


class TestSilentProcessRunner(unittest.TestCase):
    """
    Exit codes, timeouts and cancellation, exercised with real subprocesses.
    """

    def setUp(self):
        self._tmpdir = TemporaryDirectory()
        self.cwd = Path(self._tmpdir.name)
        self.runner = SilentProcessRunner(logger_stub, grace_period=0.2)

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_returns_exit_code(self):
        self.assertEqual(self.runner.run(_python("pass"), cwd=self.cwd), 0)
        self.assertEqual(self.runner.run(_python("import sys; sys.exit(3)"), cwd=self.cwd), 3)

    def test_runs_in_working_directory(self):
        self.runner.run(_python("open('here.txt', 'w').write('x')"), cwd=self.cwd)
        self.assertTrue((self.cwd / "here.txt").exists())

    def test_timeout_kills_process(self):
        started = time.monotonic()
        with self.assertRaises(subprocess.TimeoutExpired):
            self.runner.run(_python("import time; time.sleep(30)"), cwd=self.cwd, timeout=0.3)
        self.assertLess(time.monotonic() - started, 10)

    def test_cancel_kills_after_grace_period(self):
        cancel_event = threading.Event()
        cancel_event.set()

        with self.assertRaises(ProcessCancelledError):
            self.runner.run(
                _python("import time; time.sleep(30)"), cwd=self.cwd, cancel_event=cancel_event
            )

    def test_process_finishing_within_grace_period(self):
        """A process that exits before the grace period ends keeps its exit code."""
        runner = SilentProcessRunner(logger_stub, grace_period=10.0)
        cancel_event = threading.Event()
        cancel_event.set()

        code = runner.run(
            _python("import time; time.sleep(0.2)"), cwd=self.cwd, cancel_event=cancel_event
        )
        self.assertEqual(code, 0)


class TestStreamOutput(unittest.TestCase):
    def test_stream_output_copies_lines(self):
        target = StringIO()
        stream_output(StringIO("one\ntwo\n"), target)
        self.assertEqual(target.getvalue(), "one\ntwo\n")

    def test_stream_output_ignores_none(self):
        target = StringIO()
        stream_output(None, target)
        self.assertEqual(target.getvalue(), "")


class TestMakeProcessRunner(unittest.TestCase):
    def test_factory_types(self):
        cases = {
            TaskOutputTypes.ALL: PassthroughProcessRunner,
            TaskOutputTypes.NONE: SilentProcessRunner,
            TaskOutputTypes.OUT: StdoutOnlyProcessRunner,
            TaskOutputTypes.ERR: StderrOnlyProcessRunner,
        }
        for output_type, runner_class in cases.items():
            with self.subTest(output_type=output_type):
                self.assertIsInstance(make_process_runner(output_type, logger_stub), runner_class)

    def test_invalid_output_type(self):
        with self.assertRaises(ValueError):
            make_process_runner("loud", logger_stub)

    def test_stdout_only_runner_returns_exit_code(self):
        with TemporaryDirectory() as tmpdir:
            runner = make_process_runner(TaskOutputTypes.OUT, logger_stub)
            code = runner.run(_python("import sys; print('hi'); sys.exit(4)"), cwd=Path(tmpdir))
        self.assertEqual(code, 4)


if __name__ == "__main__":
    unittest.main()
