"""Unit tests for ConfigurationManager and configuration logic."""

import os
import sys

# Add the project root to the path to import modules
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

import json

import pytest

from traffic_buddy.core.config import (
    DEFAULT_CONFIG,
    ConfigurationManager,
    ConfigurationValidator,
    config_from_environment,
    deep_merge,
    load_config_file,
)
from traffic_buddy.core.errors import ConfigurationError


def test_default_config_valid():
    valid, errors = ConfigurationValidator.validate_config(DEFAULT_CONFIG)
    assert valid
    assert errors == []


def test_merge_with_defaults():
    user = {"environment": "ci", "logging": {"level": "DEBUG"}}
    merged = ConfigurationValidator.merge_with_defaults(user)
    assert merged["environment"] == "ci"
    assert merged["logging"]["level"] == "DEBUG"
    assert merged["logging"]["backup_count"] == 5
    assert merged["retry"]["max_delay_seconds"] == 30


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"b": 1, "c": 2}}
    merged = deep_merge(base, {"a": {"b": 5}})
    assert merged == {"a": {"b": 5, "c": 2}}
    assert base == {"a": {"b": 1, "c": 2}}


def test_unknown_environment_is_rejected():
    with pytest.raises(ConfigurationError) as exc_info:
        ConfigurationManager({"environment": "staging"})
    assert any("environment" in error for error in exc_info.value.errors)


def test_alias_environment_is_accepted():
    cm = ConfigurationManager({"environment": "production"})
    assert cm.build_profile().name == "production-verification"


def test_invalid_config_type_raises():
    with pytest.raises(ConfigurationError):
        ConfigurationManager(["not", "a", "dict"])


@pytest.mark.parametrize(
    "row, message",
    [
        ({"max_requests_per_window": 5}, "pattern"),
        ({"pattern": "/x"}, "max_requests_per_window"),
        ({"pattern": "/x", "max_requests_per_window": 0}, "max_requests_per_window"),
        ({"pattern": "/x", "max_requests_per_window": 5, "window_ms": 0}, "window_ms"),
        ({"pattern": "/x", "max_requests_per_window": 5, "cooldown_ms": -1}, "cooldown_ms"),
        ({"pattern": "/x", "max_requests_per_window": 5, "priority": "urgent"}, "priority"),
        ({"pattern": "/x", "max_requests_per_window": 5, "mocking_required": "yes"}, "mocking_required"),
        ({"pattern": "/x", "max_requests_per_window": 5, "burst_limit": True}, "burst_limit"),
    ],
)
def test_invalid_endpoint_rows(row, message):
    errors = ConfigurationValidator.validate_endpoint(0, row)
    assert any(message in error for error in errors)


def test_valid_endpoint_row():
    row = {
        "pattern": "/api/cities",
        "max_requests_per_window": 100,
        "window_ms": 60000,
        "burst_limit": 10,
        "cooldown_ms": 0,
        "priority": "medium",
        "cache_ttl_ms": 300000,
        "mocking_required": False,
    }
    assert ConfigurationValidator.validate_endpoint(0, row) == []


def test_invalid_retry_and_workers():
    valid, errors = ConfigurationValidator.validate_config(
        deep_merge(DEFAULT_CONFIG, {"max_parallel_workers": -1, "retry": {"jitter": 1.5}})
    )
    assert not valid
    assert len(errors) == 2


@pytest.mark.parametrize(
    "section,value",
    [
        ("retry", None),
        ("retry", 5),
        ("cache", None),
        ("cache", "fast"),
        ("logging", None),
        ("logging", ["DEBUG"]),
    ],
)
def test_malformed_section_raises_configuration_error(section, value):
    with pytest.raises(ConfigurationError) as exc_info:
        ConfigurationManager({section: value})
    assert f"{section} must be a dictionary." in exc_info.value.errors


def test_update_and_reload():
    cm = ConfigurationManager({"environment": "ci"})
    cm.update("logging.level", "DEBUG")
    assert cm.config["logging"]["level"] == "DEBUG"
    cm.reload({"environment": "load", "suite": "api-testing"})
    profile = cm.build_profile()
    assert profile.name == "load"
    assert profile.suite == "api-testing"


def test_update_invalid_value_keeps_config():
    cm = ConfigurationManager({"environment": "ci"})
    with pytest.raises(ConfigurationError):
        cm.update("environment", "staging")
    assert cm.config["environment"] == "ci"


class TestConfigFiles:
    def test_load_valid_file(self, tmp_path):
        path = tmp_path / "limits.json"
        data = {"environment": "ci", "endpoints": [{"pattern": "/api/x", "max_requests_per_window": 3}]}
        path.write_text(json.dumps(data))
        assert load_config_file(path) == data

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config_file(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{ invalid json content")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_config_file(path)

    def test_non_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError):
            load_config_file(path)

    def test_config_from_environment(self, tmp_path):
        path = tmp_path / "limits.json"
        path.write_text(json.dumps({"environment": "load"}))
        config = config_from_environment(
            {"TRAFFIC_BUDDY_CONFIG": str(path), "TRAFFIC_BUDDY_LOG_LEVEL": "WARNING"}
        )
        assert config == {"environment": "load", "logging": {"level": "WARNING"}}

    def test_config_from_empty_environment(self):
        assert config_from_environment({}) == {}
