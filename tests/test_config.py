#!/usr/bin/env python3
"""
Tests for environment-driven settings.

Run with:
    python -m pytest tests/test_config.py -v
"""

import os
import sys
import unittest
from unittest.mock import patch

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from qlab_controls.config import DEFAULT_CACHE_DIR, QLabSettings


class TestQLabSettings(unittest.TestCase):

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        settings = QLabSettings.from_env(dotenv=False)
        self.assertEqual(settings.host, "127.0.0.1")
        self.assertEqual(settings.port, 53000)
        self.assertEqual(settings.timeout, 10.0)
        self.assertEqual(settings.max_retries, 0)
        self.assertEqual(settings.passcode, "")
        self.assertFalse(settings.dry_run)
        self.assertFalse(settings.force_cue_numbers)
        self.assertEqual(settings.cache_dir, DEFAULT_CACHE_DIR)
        self.assertEqual(settings.staging_list_name, "Inbox")

    @patch.dict(os.environ, {
        "QLAB_HOST": "10.0.0.5",
        "QLAB_PORT": "53001",
        "QLAB_TIMEOUT": "60",
        "QLAB_MAX_RETRIES": "2",
        "QLAB_PASSCODE": "1234",
        "QLAB_DRY_RUN": "yes",
        "QLAB_FORCE_CUE_NUMBERS": "1",
        "QLAB_CACHE_DIR": "/tmp/qlab-cache",
        "QLAB_STAGING_LIST": "Drop",
    }, clear=True)
    def test_overrides(self):
        settings = QLabSettings.from_env(dotenv=False)
        self.assertEqual(settings.host, "10.0.0.5")
        self.assertEqual(settings.port, 53001)
        self.assertEqual(settings.timeout, 60.0)
        self.assertEqual(settings.max_retries, 2)
        self.assertEqual(settings.passcode, "1234")
        self.assertTrue(settings.dry_run)
        self.assertTrue(settings.force_cue_numbers)
        self.assertEqual(settings.cache_dir, "/tmp/qlab-cache")
        self.assertEqual(settings.staging_list_name, "Drop")

    @patch.dict(os.environ, {"QLAB_DRY_RUN": "off", "QLAB_PORT": " "}, clear=True)
    def test_blank_and_false_values(self):
        settings = QLabSettings.from_env(dotenv=False)
        self.assertFalse(settings.dry_run)
        self.assertEqual(settings.port, 53000)

    @patch.dict(os.environ, {"QLAB_PORT": "abc"}, clear=True)
    def test_invalid_number(self):
        with self.assertRaises(ValueError) as ctx:
            QLabSettings.from_env(dotenv=False)
        self.assertIn("QLAB_PORT", str(ctx.exception))

    @patch.dict(os.environ, {"QLAB_MAX_RETRIES": "-1"}, clear=True)
    def test_negative_retries(self):
        with self.assertRaises(ValueError):
            QLabSettings.from_env(dotenv=False)

    @patch.dict(os.environ, {"QLAB_TIMEOUT": "0"}, clear=True)
    def test_zero_timeout(self):
        with self.assertRaises(ValueError):
            QLabSettings.from_env(dotenv=False)

    @patch("qlab_controls.config.load_dotenv")
    @patch.dict(os.environ, {}, clear=True)
    def test_dotenv_loaded(self, mock_load):
        QLabSettings.from_env()
        mock_load.assert_called_once_with()


if __name__ == "__main__":
    unittest.main()
