"""
Tests for the centralized logging setup.

Checks that:
1. setup_logging() attaches one file and one console handler to "qlab"
2. Module loggers under qlab.* reach the log file
3. Repeated setup does not stack handlers
4. get_logger() maps short names into the qlab hierarchy
5. OSC traffic has its own level, quiet by default
"""

import logging
import os
import shutil
import sys
import tempfile
import unittest
from logging.handlers import RotatingFileHandler

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from logging_config import OSC_LOGGER_NAME, ROOT_LOGGER_NAME, get_logger, setup_logging


class TestLoggingSetup(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.log_file = os.path.join(self.tmp, "logs", "qlab_sync.log")

    def tearDown(self):
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        logging.getLogger(OSC_LOGGER_NAME).setLevel(logging.NOTSET)
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_handlers(self):
        root = setup_logging(self.log_file, console_level=logging.WARNING)
        self.assertEqual(root.name, "qlab")
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        self.assertEqual(len(file_handlers), 1)
        self.assertEqual(file_handlers[0].level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 2)

    def test_module_logger_reaches_file(self):
        setup_logging(self.log_file, console_level=logging.CRITICAL, osc_level=logging.DEBUG)
        logging.getLogger("qlab.controller").debug("OSC send /version []")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        with open(self.log_file, encoding="utf-8") as f:
            content = f.read()
        self.assertIn("qlab.controller - DEBUG - OSC send /version []", content)
        self.assertIn("QLab Sync Logging Initialized", content)

    def _read_log(self):
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        with open(self.log_file, encoding="utf-8") as f:
            return f.read()

    def test_osc_traffic_dropped_by_default(self):
        setup_logging(self.log_file, console_level=logging.CRITICAL)
        self.assertEqual(logging.getLogger(OSC_LOGGER_NAME).level, logging.INFO)
        logging.getLogger("qlab.controller").debug("OSC send /version []")
        logging.getLogger("qlab.workspace").debug("Returning cached cue lists")
        content = self._read_log()
        self.assertNotIn("OSC send", content)
        self.assertIn("qlab.workspace - DEBUG - Returning cached cue lists", content)
        self.assertIn("OSC traffic level: INFO", content)

    def test_osc_traffic_warnings_still_logged(self):
        setup_logging(self.log_file, console_level=logging.CRITICAL)
        logging.getLogger("qlab.controller").warning("No reply to /version")
        self.assertIn("qlab.controller - WARNING - No reply to /version", self._read_log())

    def test_setup_is_idempotent(self):
        setup_logging(self.log_file, console_level=logging.CRITICAL)
        root = setup_logging(self.log_file, console_level=logging.CRITICAL)
        self.assertEqual(len(root.handlers), 2)

    def test_get_logger(self):
        self.assertEqual(get_logger("reconcile.engine").name, "qlab.reconcile.engine")
        self.assertEqual(get_logger("qlab.workspace").name, "qlab.workspace")
        self.assertEqual(get_logger("qlab").name, "qlab")


if __name__ == "__main__":
    unittest.main()
