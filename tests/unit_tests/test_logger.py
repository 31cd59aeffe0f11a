"""Unit tests for logger utility."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import logging
import tempfile
import unittest
from unittest.mock import patch

from fipe_gateway.utils.logger import (
    DEFAULT_LOGGER_NAME,
    ColorFormatter,
    LoggerManager,
    configure_logging,
    get_logger,
    set_log_level,
)


class TestLoggerManager(unittest.TestCase):
    """Test cases for LoggerManager class."""

    def setUp(self):
        self.logger_manager = LoggerManager()

    def tearDown(self):
        for name in (DEFAULT_LOGGER_NAME, "host_app"):
            parent = logging.getLogger(name)
            for handler in list(parent.handlers):
                parent.removeHandler(handler)
                handler.close()

    def test_unconfigured_get_logger_applies_defaults(self):
        logger = self.logger_manager.get_logger("cache.engine")
        self.assertTrue(self.logger_manager.configured)
        self.assertEqual(logger.name, "fipe_gateway.cache.engine")
        self.assertEqual(logging.getLogger(DEFAULT_LOGGER_NAME).level, logging.INFO)

    def test_configure_level_and_no_propagation(self):
        self.logger_manager.configure({"level": "DEBUG"})
        parent = logging.getLogger(DEFAULT_LOGGER_NAME)
        self.assertEqual(parent.level, logging.DEBUG)
        self.assertFalse(parent.propagate)

    def test_parent_logger_reroots_children(self):
        self.logger_manager.configure({"parent_logger": "host_app"})
        self.assertEqual(self.logger_manager.root_name, "host_app")
        self.assertEqual(self.logger_manager.get_logger("quota.ledger").name, "host_app.quota.ledger")

    def test_reconfigure_replaces_handlers(self):
        self.logger_manager.configure({"enable_console": True})
        self.logger_manager.configure({"enable_console": True})
        self.assertEqual(len(logging.getLogger(DEFAULT_LOGGER_NAME).handlers), 1)

    def test_console_disabled(self):
        self.logger_manager.configure({"enable_console": False})
        self.assertEqual(logging.getLogger(DEFAULT_LOGGER_NAME).handlers, [])

    def test_file_handler_writes(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_path = os.path.join(tmp, "fipe.log")
            self.logger_manager.configure(
                {"enable_console": False, "enable_file": True, "file_path": log_path, "format": "%(message)s"}
            )
            self.logger_manager.get_logger("test").warning("quota exhausted")
            for handler in logging.getLogger(DEFAULT_LOGGER_NAME).handlers:
                handler.flush()
            with open(log_path) as f:
                self.assertIn("quota exhausted", f.read())
            self.tearDown()

    def test_set_level(self):
        self.logger_manager.configure({"level": "INFO"})
        self.logger_manager.set_level("ERROR")
        self.assertEqual(logging.getLogger(DEFAULT_LOGGER_NAME).level, logging.ERROR)

    def test_set_level_before_configure(self):
        self.logger_manager.set_level("WARNING")
        self.assertTrue(self.logger_manager.configured)
        self.assertEqual(logging.getLogger(DEFAULT_LOGGER_NAME).level, logging.WARNING)


class TestColorFormatter(unittest.TestCase):
    def test_colors_known_levels(self):
        formatter = ColorFormatter("%(levelname)s %(message)s")
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
        formatted = formatter.format(record)
        self.assertTrue(formatted.startswith(ColorFormatter.COLORS["WARNING"]))
        self.assertTrue(formatted.endswith(ColorFormatter.RESET))

    def test_console_uses_plain_formatter_when_not_a_tty(self):
        manager = LoggerManager()
        with patch("fipe_gateway.utils.logger._stream_is_tty", return_value=False):
            manager.configure({"enable_console": True})
        handler = logging.getLogger(DEFAULT_LOGGER_NAME).handlers[0]
        self.assertNotIsInstance(handler.formatter, ColorFormatter)


class TestModuleFunctions(unittest.TestCase):
    def test_module_level_helpers(self):
        configure_logging({"level": "DEBUG", "enable_console": False})
        logger = get_logger("core.gateway")
        self.assertEqual(logger.name, "fipe_gateway.core.gateway")
        set_log_level("ERROR")
        self.assertEqual(logging.getLogger(DEFAULT_LOGGER_NAME).level, logging.ERROR)
        configure_logging(None)


if __name__ == "__main__":
    unittest.main()
