"""Integration tests for CLI functionality."""

import json
import os
import subprocess

# Add the project root to the path to import modules
import sys
from pathlib import Path

import pytest

# Get the project root directory dynamically
PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))


def run_cli(args, env_overrides=None, cwd=None):
    env = {**os.environ, "PYTHONPATH": str(PROJECT_ROOT)}
    for name in ("TRAFFIC_BUDDY_ENV", "TRAFFIC_BUDDY_CONFIG", "TEST_TYPE", "TEST_ENVIRONMENT", "CI"):
        env.pop(name, None)
    env.update(env_overrides or {})
    return subprocess.run(
        [sys.executable, "-m", "traffic_buddy.cli", *args],
        capture_output=True,
        text=True,
        cwd=str(cwd or PROJECT_ROOT),
        env=env,
        timeout=30,
    )


def test_show_profile_detects_ci():
    result = run_cli(["--show-profile", "--log-level", "ERROR"], {"CI": "true"})
    assert result.returncode == 0, result.stderr
    assert "Environment: ci" in result.stdout


def test_show_profile_detects_load_tests():
    result = run_cli(["--show-profile", "--log-level", "ERROR"], {"CI": "true", "TEST_TYPE": "load"})
    assert result.returncode == 0, result.stderr
    assert "Environment: load" in result.stdout
    assert "Workers: 8" in result.stdout


def test_explicit_environment_variable():
    result = run_cli(["--validate"], {"TRAFFIC_BUDDY_ENV": "production-verification"})
    assert result.returncode == 0, result.stderr
    assert "production-verification" in result.stdout


def test_unknown_environment_fails():
    result = run_cli(["--environment", "qa"])
    assert result.returncode == 1
    assert "qa" in result.stdout


def test_generate_then_validate(tmp_path):
    generated = run_cli(["--generate-config"], cwd=tmp_path)
    assert generated.returncode == 0, generated.stderr
    config_path = tmp_path / "traffic_buddy_config.json"
    config = json.loads(config_path.read_text())
    assert config["environment"] == "development"

    validated = run_cli(["--config", str(config_path), "--validate"], cwd=tmp_path)
    assert validated.returncode == 0, validated.stderr
    assert "Configuration is valid" in validated.stdout
