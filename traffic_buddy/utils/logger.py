"""Logger utility for Test Traffic Buddy.

Every component asks for its logger through ``get_logger`` so one
``configure_logging`` call (driven by the ``logging`` section of the
configuration) controls level, format and handlers for the whole package.
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

DEFAULT_PARENT_LOGGER = "traffic_buddy"

DEFAULT_LOGGING_CONFIG = {
    "level": "INFO",
    "parent_logger": None,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "enable_console": True,
    "enable_file": False,
    "file_path": None,
    "max_file_size": 10485760,  # 10MB
    "backup_count": 5,
}


class ColorFormatter(logging.Formatter):
    """Formatter that colors the whole line by log level for console output."""

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        return f"{color}{super().format(record)}{self.RESET}"


class LoggerManager:
    """Owns the package's parent logger and hands out child loggers."""

    def __init__(self):
        self._loggers: Dict[str, logging.Logger] = {}
        self._configured = False
        self._config: Optional[Dict[str, Any]] = None

    @property
    def parent_name(self) -> str:
        return (self._config or {}).get("parent_logger") or DEFAULT_PARENT_LOGGER

    def configure(self, config: Dict[str, Any]) -> None:
        """Configure the parent logger.

        Args:
            config: ``logging`` section of the configuration; missing keys
                fall back to ``DEFAULT_LOGGING_CONFIG``
        """
        merged = dict(DEFAULT_LOGGING_CONFIG)
        merged.update(config or {})
        self._config = merged
        self._configured = True
        self._configure_parent_logger()

    def _configure_parent_logger(self) -> None:
        if not self._config:
            return

        parent_logger = logging.getLogger(self.parent_name)
        # Drop handlers from a previous configure() to avoid duplicate lines
        for handler in list(parent_logger.handlers):
            parent_logger.removeHandler(handler)
            handler.close()

        level = getattr(logging, str(self._config.get("level", "INFO")).upper(), logging.INFO)
        parent_logger.setLevel(level)

        log_format = self._config["format"]
        date_format = self._config["date_format"]

        if self._config.get("enable_console", True):
            console_handler = logging.StreamHandler(sys.stdout)
            if sys.stdout.isatty():
                console_handler.setFormatter(ColorFormatter(log_format, date_format))
            else:
                console_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(console_handler)

        file_path = self._config.get("file_path")
        if self._config.get("enable_file", False) and file_path:
            file_handler = logging.handlers.RotatingFileHandler(
                file_path,
                maxBytes=self._config.get("max_file_size", 10485760),
                backupCount=self._config.get("backup_count", 5),
            )
            file_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(file_handler)

        parent_logger.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """Return the child logger ``<parent>.<name>``, configuring defaults on first use."""
        if not self._configured:
            self.configure({})

        full_name = f"{self.parent_name}.{name}"
        if full_name not in self._loggers:
            self._loggers[full_name] = logging.getLogger(full_name)
        return self._loggers[full_name]

    def set_level(self, level: str) -> None:
        """Change the level of the parent logger (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""
        if not self._configured:
            self.configure({})
        self._config["level"] = level
        logging.getLogger(self.parent_name).setLevel(getattr(logging, level.upper(), logging.INFO))


_logger_manager = LoggerManager()


def configure_logging(config: Dict[str, Any]) -> None:
    """Configure package logging from the ``logging`` configuration section.

    Call once at startup; later calls replace the handlers.
    """
    _logger_manager.configure(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a component.

    Example:
        logger = get_logger("throttling.manager")
        logger.info("Admitted request")
    """
    return _logger_manager.get_logger(name)


def set_log_level(level: str) -> None:
    _logger_manager.set_level(level)
