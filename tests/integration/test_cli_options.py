"""Integration tests for the informational CLI options."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from typer.testing import CliRunner

from helpers.io import strip_ansi_codes, working_directory
from tessy import __version__
from tessy.cli import app

RECIPE = """
tasks:
  compile:
    desc: Compile the sources
    inputs: [a.c]
    outputs: [a.o]
    cmd: cp a.c a.o
  link:
    desc: Link the application
    deps: [compile]
    outputs: [app]
    cmd: cp a.o app
  docs:
    cmd: echo docs
"""


class TestCLIOptions(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        self.env = {"NO_COLOR": "1"}
        self._tmpdir = TemporaryDirectory()
        self.project_root = Path(self._tmpdir.name)
        (self.project_root / "tessy.yaml").write_text(RECIPE)
        (self.project_root / "a.c").write_text("int a;\n")

    def tearDown(self):
        self._tmpdir.cleanup()

    def invoke(self, *args: str):
        with working_directory(self.project_root):
            result = self.runner.invoke(app, list(args), env=self.env)
        return result.exit_code, strip_ansi_codes(result.output)

    def test_version(self):
        exit_code, output = self.invoke("--version")
        self.assertEqual(exit_code, 0)
        self.assertIn(__version__, output)

    def test_list_in_declaration_order(self):
        exit_code, output = self.invoke("--list")

        self.assertEqual(exit_code, 0)
        self.assertLess(output.index("compile"), output.index("link"))
        self.assertLess(output.index("link"), output.index("docs"))
        self.assertIn("Compile the sources", output)
        self.assertFalse((self.project_root / "a.o").exists())

    def test_tree_shows_staleness(self):
        exit_code, output = self.invoke("--tree", "link")

        self.assertEqual(exit_code, 0, output)
        self.assertIn("link (stale: never_run)", output)
        self.assertIn("compile (stale: never_run)", output)
        self.assertNotIn("docs", output)

    def test_tree_after_build(self):
        self.invoke("-O", "none")

        exit_code, output = self.invoke("--tree", "link")

        self.assertEqual(exit_code, 0, output)
        self.assertIn("link (fresh)", output)
        self.assertIn("compile (fresh)", output)

    def test_tree_unknown_task(self):
        exit_code, output = self.invoke("--tree", "deploy")
        self.assertEqual(exit_code, 2)
        self.assertIn("Task not found: deploy", output)

    def test_clean_state(self):
        self.invoke("-O", "none")
        store_path = self.project_root / ".tessy" / "fingerprints.json"
        self.assertTrue(store_path.exists())

        exit_code, output = self.invoke("--clean-state")

        self.assertEqual(exit_code, 0)
        self.assertIn("Removed", output)
        self.assertFalse(store_path.exists())

        exit_code, output = self.invoke("-O", "none")
        self.assertIn("Running: compile", output)

    def test_clean_state_without_store(self):
        exit_code, output = self.invoke("--clean-state")
        self.assertEqual(exit_code, 0)
        self.assertIn("No fingerprint store found", output)

    def test_log_level_debug_shows_reasons(self):
        exit_code, output = self.invoke("-O", "none", "--log-level", "debug")
        self.assertEqual(exit_code, 0, output)
        self.assertIn("Task 'compile' is stale: never_run", output)

    def test_log_level_error_hides_progress(self):
        exit_code, output = self.invoke("-O", "none", "-L", "error")
        self.assertEqual(exit_code, 0, output)
        self.assertNotIn("Running:", output)

    def test_invalid_log_level(self):
        exit_code, output = self.invoke("--log-level", "verbose")
        self.assertEqual(exit_code, 2)
        self.assertIn("Invalid log level", output)

    def test_invalid_task_output(self):
        exit_code, output = self.invoke("-O", "loud")
        self.assertEqual(exit_code, 2)
        self.assertFalse((self.project_root / "a.o").exists())

    def test_jobs_from_project_config(self):
        (self.project_root / ".tessy-config.yml").write_text("jobs: 1\n")
        exit_code, output = self.invoke("-O", "none", "-L", "debug")
        self.assertEqual(exit_code, 0, output)
        self.assertIn("with up to 1 in flight", output)

    def test_jobs_option_overrides_config(self):
        (self.project_root / ".tessy-config.yml").write_text("jobs: 1\n")
        exit_code, output = self.invoke("-O", "none", "-L", "debug", "-j", "3")
        self.assertEqual(exit_code, 0, output)
        self.assertIn("with up to 3 in flight", output)

    def test_invalid_project_config(self):
        (self.project_root / ".tessy-config.yml").write_text("workers: 4\n")
        exit_code, output = self.invoke("-O", "none")
        self.assertEqual(exit_code, 2)
        self.assertIn("workers", output)


if __name__ == "__main__":
    unittest.main()
