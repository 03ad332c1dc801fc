import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path

from ktdance.config import Settings, load_settings


class TestLoadSettings(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = Path(self.tmpdir) / "ktdance.json"

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_defaults(self):
        self.path.write_text("{}", encoding="utf-8")
        self.assertEqual(load_settings(self.path), Settings())

    def test_values_are_cast(self):
        self.path.write_text(json.dumps({
            "flip_v": "false",
            "strict_batch_count": 1,
            "default_frame": "12",
            "log_level": "debug",
            "unused": True,
        }), encoding="utf-8")
        settings = load_settings(self.path)
        self.assertFalse(settings.flip_v)
        self.assertTrue(settings.strict_batch_count)
        self.assertEqual(settings.default_frame, 12)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_missing_file(self):
        with self.assertRaises(OSError):
            load_settings(Path(os.path.join(self.tmpdir, "nope.json")))


if __name__ == '__main__':
    unittest.main()
