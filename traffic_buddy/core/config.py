"""Configuration management for Test Traffic Buddy."""

import copy
import json
import os
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from traffic_buddy.core.errors import ConfigurationError
from traffic_buddy.policy.registry import Priority
from traffic_buddy.profiles.manager import ALIASES, PROFILES, EnvironmentProfile, build_profile

CONFIG_PATH_ENV = "TRAFFIC_BUDDY_CONFIG"
LOG_LEVEL_ENV = "TRAFFIC_BUDDY_LOG_LEVEL"

# Default configuration schema
DEFAULT_CONFIG = {
    "environment": None,  # None: detect from environment variables
    "suite": None,
    "max_parallel_workers": None,
    "request_spacing_ms": None,  # None: use the environment's spacing
    "endpoints": [],
    "cache": {"sweep_interval_seconds": 300},
    "retry": {"max_delay_seconds": 30, "jitter": 0.0},
    "logging": {
        "level": "INFO",
        "parent_logger": None,
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "date_format": "%Y-%m-%d %H:%M:%S",
        "enable_console": True,
        "enable_file": False,
        "file_path": None,
        "max_file_size": 10485760,  # 10MB
        "backup_count": 5,
    },
}

_ENDPOINT_INT_FIELDS = ("max_requests_per_window", "burst_limit")
_ENDPOINT_MS_FIELDS = ("window_ms", "cooldown_ms", "cache_ttl_ms", "burst_window_ms")


def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge two dictionaries."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ConfigurationValidator:
    """Validates configuration and provides error reporting."""

    @staticmethod
    def validate_endpoint(index: int, row: Any) -> List[str]:
        errors = []
        prefix = f"endpoints[{index}]"
        if not isinstance(row, dict):
            return [f"{prefix} must be a dictionary."]
        if not isinstance(row.get("pattern"), str) or not row.get("pattern"):
            errors.append(f"{prefix}.pattern must be a non-empty string.")
        for name in _ENDPOINT_INT_FIELDS:
            if name not in row and name == "burst_limit":
                continue
            value = row.get(name)
            if not _is_int(value) or value <= 0:
                errors.append(f"{prefix}.{name} must be a positive integer.")
        for name in _ENDPOINT_MS_FIELDS:
            if name not in row:
                continue
            value = row[name]
            if not _is_number(value) or value < 0:
                errors.append(f"{prefix}.{name} must be a non-negative number.")
            elif name in ("window_ms", "burst_window_ms") and value == 0:
                errors.append(f"{prefix}.{name} must be positive.")
        if "priority" in row:
            try:
                Priority.parse(row["priority"])
            except ValueError:
                errors.append(f"{prefix}.priority must be one of low, medium, high.")
        if "mocking_required" in row and not isinstance(row["mocking_required"], bool):
            errors.append(f"{prefix}.mocking_required must be a boolean.")
        return errors

    @staticmethod
    def validate_config(config: dict) -> Tuple[bool, List[str]]:
        errors = []
        if not isinstance(config, dict):
            errors.append("Config must be a dictionary.")
            return False, errors
        environment = config.get("environment")
        if environment is not None:
            if not isinstance(environment, str):
                errors.append("environment must be a string or None.")
            elif ALIASES.get(environment.lower(), environment.lower()) not in PROFILES:
                errors.append(f"environment must be one of {sorted(PROFILES)}, got {environment!r}.")
        suite = config.get("suite")
        if suite is not None and not isinstance(suite, str):
            errors.append("suite must be a string or None.")
        workers = config.get("max_parallel_workers")
        if workers is not None and (not _is_int(workers) or workers <= 0):
            errors.append("max_parallel_workers must be a positive integer or None.")
        spacing = config.get("request_spacing_ms")
        if spacing is not None and (not _is_number(spacing) or spacing < 0):
            errors.append("request_spacing_ms must be a non-negative number or None.")
        endpoints = config.get("endpoints", [])
        if not isinstance(endpoints, list):
            errors.append("endpoints must be a list.")
        else:
            for index, row in enumerate(endpoints):
                errors.extend(ConfigurationValidator.validate_endpoint(index, row))
        # Validate cache
        cache = config.get("cache", {})
        if not isinstance(cache, dict):
            errors.append("cache must be a dictionary.")
        else:
            interval = cache.get("sweep_interval_seconds")
            if interval is not None and (not _is_number(interval) or interval <= 0):
                errors.append("cache.sweep_interval_seconds must be a positive number or None.")
        # Validate retry
        retry = config.get("retry", {})
        if not isinstance(retry, dict):
            errors.append("retry must be a dictionary.")
        else:
            if not _is_number(retry.get("max_delay_seconds")) or retry.get("max_delay_seconds") < 0:
                errors.append("retry.max_delay_seconds must be a non-negative number.")
            if not _is_number(retry.get("jitter")) or not 0 <= retry.get("jitter") < 1:
                errors.append("retry.jitter must be a number in [0, 1).")
        # Validate logging
        logging_cfg = config.get("logging", {})
        if not isinstance(logging_cfg, dict):
            errors.append("logging must be a dictionary.")
            return False, errors
        if not isinstance(logging_cfg.get("level", None), str):
            errors.append("logging.level must be a string.")
        if logging_cfg.get("parent_logger") is not None and not isinstance(logging_cfg.get("parent_logger"), str):
            errors.append("logging.parent_logger must be a string or None.")
        for name in ("format", "date_format"):
            if not isinstance(logging_cfg.get(name, None), str):
                errors.append(f"logging.{name} must be a string.")
        for name in ("enable_console", "enable_file"):
            if not isinstance(logging_cfg.get(name, None), bool):
                errors.append(f"logging.{name} must be a boolean.")
        if logging_cfg.get("file_path") is not None and not isinstance(logging_cfg.get("file_path"), str):
            errors.append("logging.file_path must be a string or None.")
        for name in ("max_file_size", "backup_count"):
            if not _is_int(logging_cfg.get(name, None)):
                errors.append(f"logging.{name} must be an integer.")
        return len(errors) == 0, errors

    @staticmethod
    def merge_with_defaults(user_config: dict) -> dict:
        return deep_merge(DEFAULT_CONFIG, user_config)


class ConfigurationManager:
    """Loads, validates and merges configuration, and builds the active profile."""

    def __init__(self, user_config: dict = None):
        if user_config is None:
            user_config = {}
        self._config = self.load_config(user_config)

    def load_config(self, user_config: dict) -> dict:
        if not isinstance(user_config, dict):
            raise ConfigurationError("Invalid configuration: ['Config must be a dictionary.']")
        merged = ConfigurationValidator.merge_with_defaults(user_config)
        valid, errors = ConfigurationValidator.validate_config(merged)
        if not valid:
            raise ConfigurationError(f"Invalid configuration: {errors}", errors=errors)
        return merged

    @property
    def config(self) -> dict:
        return self._config

    def build_profile(self) -> EnvironmentProfile:
        """Resolve the environment profile described by this configuration."""
        return build_profile(self._config)

    def update(self, key_path: str, value: Any) -> None:
        """Update a config value at a dotted key path (e.g., 'logging.level')."""
        updated = copy.deepcopy(self._config)
        keys = key_path.split(".")
        d = updated
        for k in keys[:-1]:
            if k not in d or not isinstance(d[k], dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value
        valid, errors = ConfigurationValidator.validate_config(updated)
        if not valid:
            raise ConfigurationError(f"Invalid configuration after update: {errors}", errors=errors)
        self._config = updated

    def reload(self, new_config: dict) -> None:
        self._config = self.load_config(new_config)


def load_config_file(config_path) -> dict:
    """Read a JSON policy table from ``config_path``.

    Raises:
        ConfigurationError: If the file is missing or not valid JSON
    """
    path = Path(config_path)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")
    return data


def config_from_environment(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Build a user configuration from environment variables.

    ``TRAFFIC_BUDDY_CONFIG`` points at a JSON policy table and
    ``TRAFFIC_BUDDY_LOG_LEVEL`` overrides the log level.
    """
    environ = os.environ if environ is None else environ
    config = {}
    path = environ.get(CONFIG_PATH_ENV)
    if path:
        config = load_config_file(path)
    level = environ.get(LOG_LEVEL_ENV)
    if level:
        config = deep_merge(config, {"logging": {"level": level}})
    return config
