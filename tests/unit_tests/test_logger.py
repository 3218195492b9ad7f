"""Unit tests for logger utility."""

import os
import sys

# Add the project root to the path to import modules
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import logging
import tempfile
import unittest
from io import StringIO

from traffic_buddy.utils.logger import DEFAULT_LOGGING_CONFIG, LoggerManager, configure_logging, get_logger, set_log_level


class TestLoggerManager(unittest.TestCase):
    """Test cases for LoggerManager class."""

    def setUp(self):
        self.logger_manager = LoggerManager()

    def test_configure_basic(self):
        """Test basic logger configuration."""
        config = {
            "level": "DEBUG",
            "parent_logger": None,
            "format": "%(name)s - %(levelname)s - %(message)s",
            "date_format": "%Y-%m-%d %H:%M:%S",
            "enable_console": True,
            "enable_file": False,
            "file_path": None,
            "max_file_size": 10485760,
            "backup_count": 5,
        }

        self.logger_manager.configure(config)
        self.assertTrue(self.logger_manager._configured)
        self.assertEqual(self.logger_manager._config, config)
        self.assertEqual(logging.getLogger("traffic_buddy").level, logging.DEBUG)

    def test_partial_config_uses_defaults(self):
        self.logger_manager.configure({"level": "WARNING"})
        self.assertEqual(self.logger_manager._config["format"], DEFAULT_LOGGING_CONFIG["format"])
        self.assertEqual(self.logger_manager._config["level"], "WARNING")

    def test_get_logger(self):
        """Test getting logger instances."""
        self.logger_manager.configure({"level": "INFO"})
        logger = self.logger_manager.get_logger("throttling.manager")

        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logger.name, "traffic_buddy.throttling.manager")

    def test_get_logger_with_parent(self):
        """Test getting logger with custom parent."""
        self.logger_manager.configure({"level": "INFO", "parent_logger": "my_suite"})
        logger = self.logger_manager.get_logger("test_module")

        self.assertEqual(logger.name, "my_suite.test_module")

    def test_get_logger_without_configuration(self):
        """Test getting logger without prior configuration uses defaults."""
        logger = self.logger_manager.get_logger("test_module")

        self.assertIsInstance(logger, logging.Logger)
        self.assertTrue(self.logger_manager._configured)

    def test_reconfigure_replaces_handlers(self):
        self.logger_manager.configure({"level": "INFO", "enable_console": True})
        self.logger_manager.configure({"level": "INFO", "enable_console": True})
        self.assertEqual(len(logging.getLogger("traffic_buddy").handlers), 1)

    def test_set_level(self):
        """Test setting log level."""
        self.logger_manager.configure({"level": "INFO"})
        self.logger_manager.set_level("DEBUG")

        self.assertEqual(self.logger_manager._config["level"], "DEBUG")
        self.assertEqual(logging.getLogger("traffic_buddy").level, logging.DEBUG)


class TestLoggerIntegration(unittest.TestCase):
    """Test cases for logger integration functions."""

    def tearDown(self):
        configure_logging({})

    def test_configure_logging(self):
        """Test configure_logging function."""
        configure_logging({"level": "WARNING", "format": "Test: %(message)s"})
        logger = get_logger("integration_test")

        # Capture log output
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        logger.parent.handlers = [handler]

        logger.info("This should not appear")  # Below WARNING level
        logger.warning("This should appear")

        output = stream.getvalue()
        self.assertNotIn("This should not appear", output)
        self.assertIn("This should appear", output)

    def test_set_log_level_function(self):
        """Test set_log_level convenience function."""
        configure_logging({"level": "INFO"})
        set_log_level("ERROR")

        logger = get_logger("level_test")
        self.assertEqual(logger.getEffectiveLevel(), logging.ERROR)


class TestLoggerFileOutput(unittest.TestCase):
    """Test cases for file logging functionality."""

    def test_file_logging(self):
        """Test logging to file."""
        with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".log") as temp_file:
            temp_path = temp_file.name

        try:
            config = {
                "level": "INFO",
                "enable_console": False,
                "enable_file": True,
                "file_path": temp_path,
                "format": "%(levelname)s: %(message)s",
            }

            configure_logging(config)
            logger = get_logger("file_test")

            test_message = "Admitted GET:/api/cities"
            logger.info(test_message)

            for handler in logger.parent.handlers:
                handler.flush()

            with open(temp_path, "r") as f:
                content = f.read()
                self.assertIn(test_message, content)
                self.assertIn("INFO:", content)

        finally:
            # Restoring the default config closes the file handler
            configure_logging({})
            if os.path.exists(temp_path):
                os.unlink(temp_path)


if __name__ == "__main__":
    unittest.main()
