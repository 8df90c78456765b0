import tempfile
import unittest
import zipfile
from pathlib import Path

from package_plugin import PLUGIN_NAME, create_plugin_package, is_excluded, read_version


class PackagePluginTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.plugin_dir = Path(self._tmp.name) / "plugin"
        (self.plugin_dir / "core" / "__pycache__").mkdir(parents=True)
        (self.plugin_dir / "test").mkdir()
        (self.plugin_dir / "metadata.txt").write_text("[general]\nname=X\nversion=1.2.3\n", encoding="utf-8")
        for name in ("__init__.py", "core/workflow.py", "core/__pycache__/workflow.cpython-312.pyc",
                     "test/test_workflow.py", "README.md", "DESIGN.md"):
            (self.plugin_dir / name).write_text("x", encoding="utf-8")

    def tearDown(self):
        self._tmp.cleanup()

    def test_read_version(self):
        self.assertEqual(read_version(self.plugin_dir), "1.2.3")
        self.assertEqual(read_version(Path(self._tmp.name) / "missing"), "0.0.0")

    def test_exclusions(self):
        self.assertTrue(is_excluded("core/__pycache__/a.pyc"))
        self.assertTrue(is_excluded("test/test_workflow.py"))
        self.assertTrue(is_excluded("DESIGN.md"))
        self.assertFalse(is_excluded("README.md"))
        self.assertFalse(is_excluded("core/workflow.py"))

    def test_archive_contents(self):
        zip_path = create_plugin_package(self.plugin_dir, self._tmp.name)

        self.assertEqual(zip_path.name, f"{PLUGIN_NAME}-1.2.3.zip")
        with zipfile.ZipFile(zip_path) as zipf:
            names = sorted(zipf.namelist())
        self.assertEqual(
            names,
            sorted(
                f"{PLUGIN_NAME}/{name}"
                for name in ("README.md", "__init__.py", "core/workflow.py", "metadata.txt")
            ),
        )


if __name__ == "__main__":
    unittest.main()
