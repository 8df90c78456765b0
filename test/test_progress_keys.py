import re
import unittest
from pathlib import Path

from core.errors import ERROR_LABELS

REPO_ROOT = Path(__file__).parents[1]


class ProgressKeysTest(unittest.TestCase):
    """Ensure progress keys used by exporter are present in UI mapping."""

    def test_progress_keys_present_in_plugin(self):
        text = (REPO_ROOT / "TileCacheExporter.py").read_text(encoding="utf-8", errors="replace")

        expected_keys = {
            "STEP_VALIDATE",
            "STEP_PREPARE",
            "STEP_RENDER_LEVEL",
            "STEP_WRITE_TILES",
            "STEP_WRITE_METADATA",
            "STEP_DONE",
            "WARN_TILE_RETRY",
            "WARN_LARGE_EXPORT",
        }

        missing = [k for k in expected_keys if k not in text]
        self.assertFalse(missing, f"Missing progress keys in TileCacheExporter.py: {missing}")

    def test_exporter_emits_only_known_keys(self):
        exporter = (REPO_ROOT / "core" / "exporter.py").read_text(encoding="utf-8")
        plugin = (REPO_ROOT / "TileCacheExporter.py").read_text(encoding="utf-8")

        emitted = set(re.findall(r'"((?:STEP|WARN)_[A-Z_]+)"', exporter))
        self.assertTrue(emitted)
        unknown = sorted(k for k in emitted if k not in plugin)
        self.assertFalse(unknown, f"Keys without a message: {unknown}")

    def test_core_error_codes_have_messages(self):
        plugin = (REPO_ROOT / "TileCacheExporter.py").read_text(encoding="utf-8")

        missing = sorted(code for code in ERROR_LABELS if f'"{code}"' not in plugin)
        self.assertFalse(missing, f"Error codes without a message: {missing}")
        self.assertIn("return format_error(err)", plugin)


if __name__ == "__main__":
    unittest.main()
