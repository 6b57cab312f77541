"""Tests for parser module."""

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from tessy.actions import BuiltinAction, BuiltinOp, ShellAction
from tessy.parser import DefinitionError, Task, find_recipe_file, parse_recipe, parse_task


class TestParseTask(unittest.TestCase):
    def test_full_task(self):
        task = parse_task(
            "compile",
            {
                "desc": "Compile a.c",
                "cmd": "cc -c a.c -o a.o",
                "deps": ["configure"],
                "inputs": ["a.c", "include/*.h"],
                "outputs": "a.o",
                "working_dir": "src",
                "timeout": 30,
            },
            "tessy.yaml",
        )

        self.assertEqual(task.action, ShellAction("cc -c a.c -o a.o"))
        self.assertEqual(task.deps, ["configure"])
        self.assertEqual(task.inputs, ["a.c", "include/*.h"])
        self.assertEqual(task.outputs, ["a.o"])
        self.assertEqual(task.working_dir, "src")
        self.assertEqual(task.timeout, 30.0)
        self.assertEqual(task.source_file, "tessy.yaml")

    def test_task_without_action_is_noop(self):
        task = parse_task("all", {"deps": ["build", "test"]})
        self.assertEqual(task.action, BuiltinAction(BuiltinOp.NOOP))

    def test_empty_task(self):
        task = parse_task("nothing", None)
        self.assertEqual(task.deps, [])
        self.assertEqual(task.working_dir, ".")

    def test_builtin_mapping(self):
        task = parse_task("dirs", {"builtin": {"op": "mkdir", "paths": ["build", "dist"]}})
        self.assertEqual(task.action, BuiltinAction(BuiltinOp.MKDIR, ("build", "dist")))

    def test_builtin_shorthand(self):
        task = parse_task("nothing", {"builtin": "noop"})
        self.assertEqual(task.action, BuiltinAction(BuiltinOp.NOOP))

    def test_cmd_and_builtin_conflict(self):
        with self.assertRaises(DefinitionError):
            parse_task("t", {"cmd": "true", "builtin": "noop"})

    def test_unknown_builtin(self):
        with self.assertRaises(DefinitionError) as cm:
            parse_task("t", {"builtin": {"op": "rm", "paths": ["/"]}})
        self.assertIn("rm", str(cm.exception))

    def test_unknown_field(self):
        with self.assertRaises(DefinitionError) as cm:
            parse_task("t", {"cmd": "true", "args": ["x"]})
        self.assertIn("args", str(cm.exception))

    def test_invalid_timeout(self):
        for value in (0, -1, "soon", True):
            with self.subTest(value=value):
                with self.assertRaises(DefinitionError):
                    parse_task("t", {"cmd": "true", "timeout": value})

    def test_invalid_lists(self):
        with self.assertRaises(DefinitionError):
            parse_task("t", {"deps": [1, 2]})
        with self.assertRaises(DefinitionError):
            parse_task("t", {"inputs": {"a": "b"}})

    def test_empty_cmd(self):
        with self.assertRaises(DefinitionError):
            parse_task("t", {"cmd": "   "})

    def test_task_normalizes_strings(self):
        task = Task(name="t", deps="a", inputs="b", outputs="c", working_dir="")
        self.assertEqual((task.deps, task.inputs, task.outputs), (["a"], ["b"], ["c"]))
        self.assertEqual(task.working_dir, ".")


class TestParseRecipe(unittest.TestCase):
    def test_tasks_in_declaration_order(self):
        with TemporaryDirectory() as tmpdir:
            recipe_path = Path(tmpdir) / "tessy.yaml"
            recipe_path.write_text("""
tasks:
  link:
    deps: [compile]
    cmd: cc a.o -o app
  compile:
    cmd: cc -c a.c
""")
            recipe = parse_recipe(recipe_path)

            self.assertEqual(recipe.task_names(), ["link", "compile"])
            self.assertEqual(recipe.project_root, Path(tmpdir).resolve())
            self.assertEqual(recipe.get_task("link").deps, ["compile"])
            self.assertIsNone(recipe.get_task("deploy"))

    def test_tasks_at_root_level(self):
        with TemporaryDirectory() as tmpdir:
            recipe_path = Path(tmpdir) / "tessy.yaml"
            recipe_path.write_text("build:\n  cmd: make\n")
            self.assertEqual(parse_recipe(recipe_path).task_names(), ["build"])

    def test_empty_file(self):
        with TemporaryDirectory() as tmpdir:
            recipe_path = Path(tmpdir) / "tessy.yaml"
            recipe_path.write_text("")
            self.assertEqual(parse_recipe(recipe_path).tasks, {})

    def test_invalid_yaml(self):
        with TemporaryDirectory() as tmpdir:
            recipe_path = Path(tmpdir) / "tessy.yaml"
            recipe_path.write_text("build: [unclosed\n")
            with self.assertRaises(DefinitionError):
                parse_recipe(recipe_path)

    def test_top_level_must_be_mapping(self):
        with TemporaryDirectory() as tmpdir:
            recipe_path = Path(tmpdir) / "tessy.yaml"
            recipe_path.write_text("- build\n- test\n")
            with self.assertRaises(DefinitionError):
                parse_recipe(recipe_path)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            parse_recipe(Path("/nonexistent/tessy.yaml"))


class TestFindRecipeFile(unittest.TestCase):
    def test_finds_file_in_parent(self):
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "tasks.yaml").write_text("{}")
            nested = root / "src" / "lib"
            nested.mkdir(parents=True)

            self.assertEqual(find_recipe_file(nested), (root / "tasks.yaml").resolve())

    def test_prefers_tessy_yaml(self):
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "tasks.yaml").write_text("{}")
            (root / "tessy.yaml").write_text("{}")
            self.assertEqual(find_recipe_file(root).name, "tessy.yaml")


if __name__ == "__main__":
    unittest.main()
