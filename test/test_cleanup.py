import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from core.cleanup import SessionCleanup, purge_working_directory


def populate(root):
    (root / "tile_cache" / "run1" / "5" / "16").mkdir(parents=True)
    (root / "tile_cache" / "run1" / "5" / "16" / "10.png").write_bytes(b"png")
    (root / "tile_cache" / "run1" / "metadata.json").write_text("{}")
    (root / "empty").mkdir()
    (root / "loose.txt").write_text("x")


class PurgeWorkingDirectoryTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "work"
        self.root.mkdir()

    def tearDown(self):
        self._tmp.cleanup()

    def test_nested_content_removed_root_kept(self):
        populate(self.root)

        self.assertTrue(purge_working_directory(self.root))
        self.assertTrue(self.root.is_dir())
        self.assertEqual(os.listdir(self.root), [])

    def test_missing_root_counts_as_clean(self):
        self.assertTrue(purge_working_directory(self.root / "missing"))

    def test_empty_root(self):
        self.assertTrue(purge_working_directory(str(self.root)))

    def test_file_root_is_rejected(self):
        target = self.root / "file.txt"
        target.write_text("x")
        self.assertFalse(purge_working_directory(target))
        self.assertTrue(target.exists())

    def test_failed_deletion_returns_false(self):
        populate(self.root)
        with mock.patch("core.cleanup.os.remove", side_effect=PermissionError("locked")):
            with self.assertLogs("core.cleanup", level="WARNING"):
                self.assertFalse(purge_working_directory(self.root))
        self.assertTrue((self.root / "loose.txt").exists())

    def test_symlinked_directory_not_followed(self):
        outside = Path(self._tmp.name) / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        try:
            os.symlink(outside, self.root / "link")
        except (OSError, NotImplementedError):
            self.skipTest("symlinks not supported")

        self.assertTrue(purge_working_directory(self.root))
        self.assertTrue((outside / "keep.txt").exists())


class SessionCleanupTests(unittest.TestCase):
    def test_records_last_result(self):
        with tempfile.TemporaryDirectory() as tmp:
            cleanup = SessionCleanup(tmp)
            self.assertIsNone(cleanup.last_result)
            Path(tmp, "a.png").write_bytes(b"")
            self.assertTrue(cleanup.purge())
            self.assertTrue(cleanup.last_result)


if __name__ == "__main__":
    unittest.main()
