"""End-to-end test of interrupting a real tessy process."""

import os
import signal
import subprocess
import sys
import time
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

SRC_DIR = Path(__file__).resolve().parents[2] / "src"


@unittest.skipIf(sys.platform == "win32", "POSIX signals required")
class TestInterrupt(unittest.TestCase):
    def test_sigint_cancels_run(self):
        """Test that Ctrl-C stops the run with the cancelled exit code."""
        with TemporaryDirectory() as tmpdir:
            project_root = Path(tmpdir)
            (project_root / "tessy.yaml").write_text("""
tasks:
  first:
    outputs: [first.txt]
    cmd: echo first > first.txt
  slow:
    deps: [first]
    cmd: touch started && exec sleep 30
  after:
    deps: [slow]
    cmd: touch after.ran
""")
            env = dict(os.environ)
            env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC_DIR), env.get("PYTHONPATH")]))
            env["NO_COLOR"] = "1"

            process = subprocess.Popen(
                [sys.executable, "-m", "tessy.cli", "-O", "none", "--grace-period", "0.5"],
                cwd=project_root,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
            try:
                deadline = time.monotonic() + 30
                while not (project_root / "started").exists():
                    self.assertIsNone(process.poll(), "tessy exited before the slow task started")
                    self.assertLess(time.monotonic(), deadline)
                    time.sleep(0.05)

                process.send_signal(signal.SIGINT)
                output, _ = process.communicate(timeout=30)
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()

            self.assertEqual(process.returncode, 3, output)
            self.assertFalse((project_root / "after.ran").exists())
            self.assertIn("Cancelling run", output)

            store = (project_root / ".tessy" / "fingerprints.json").read_text()
            self.assertIn('"first"', store)
            self.assertNotIn('"slow"', store)


if __name__ == "__main__":
    unittest.main()
