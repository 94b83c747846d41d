"""
Unit tests for logging utilities.
"""

import json
import logging
import os
import sys
import tempfile
import unittest
from log_utils import PRETTY_FORMAT, JsonFormatter, setup_logging


class TestLogUtils(unittest.TestCase):
    """Test logging utilities."""

    def tearDown(self):
        logging.basicConfig(level=logging.WARNING, force=True)

    def test_setup_logging_default(self):
        """Test default logging setup."""
        logger = setup_logging()
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logging.getLogger().level, logging.INFO)
        self.assertIsInstance(logging.getLogger().handlers[0].formatter, JsonFormatter)

    def test_setup_logging_pretty(self):
        """Test pretty logging setup."""
        setup_logging(level="DEBUG", pretty=True)
        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(root.handlers[0].formatter._fmt, PRETTY_FORMAT)

    def test_warn_alias(self):
        """Test WARN is accepted as a level name."""
        setup_logging(level="WARN")
        self.assertEqual(logging.getLogger().level, logging.WARNING)

    def test_log_file(self):
        """Test a file handler is added when a log file is given."""
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "updater.log")
            setup_logging(log_file=path)
            handlers = logging.getLogger().handlers
            self.assertEqual(len(handlers), 2)
            for handler in handlers:
                handler.close()


class TestJsonFormatter(unittest.TestCase):
    """Test the JSON log formatter."""

    def test_format_record(self):
        """Test a record renders as one JSON object."""
        record = logging.LogRecord("upgrader", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        entry = json.loads(JsonFormatter().format(record))
        self.assertEqual(entry["level"], "info")
        self.assertEqual(entry["logger"], "upgrader")
        self.assertEqual(entry["message"], "hello world")
        self.assertNotIn("error", entry)

    def test_format_exception(self):
        """Test attached exceptions are rendered in the error field."""
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()
        record = logging.LogRecord("upgrader", logging.ERROR, __file__, 1, "failed", None, exc_info)
        entry = json.loads(JsonFormatter().format(record))
        self.assertIn("ValueError: boom", entry["error"])


if __name__ == "__main__":
    unittest.main()
