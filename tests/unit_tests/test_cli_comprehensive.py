"""Comprehensive tests for the CLI module."""

import json
import os

# Add the project root to the path to import modules
import sys
from pathlib import Path

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from traffic_buddy.cli import create_default_config, load_config, main
from traffic_buddy.core.config import ConfigurationManager


class TestLoadConfig:
    """Test configuration loading functionality."""

    def test_load_valid_config(self, tmp_path):
        config_data = {"environment": "ci", "endpoints": []}
        config_path = tmp_path / "limits.json"
        config_path.write_text(json.dumps(config_data))

        assert load_config(config_path) == config_data

    def test_load_config_file_not_found(self):
        with pytest.raises(SystemExit) as exc_info:
            load_config(Path("/non/existent/config.json"))

        assert exc_info.value.code == 1

    def test_load_config_invalid_json(self, tmp_path):
        config_path = tmp_path / "bad.json"
        config_path.write_text("{ invalid json content")

        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path)

        assert exc_info.value.code == 1


class TestCreateDefaultConfig:
    def test_default_config_is_valid(self, monkeypatch):
        monkeypatch.setenv("TRAFFIC_BUDDY_ENV", "ci")
        config = create_default_config()
        assert config["environment"] == "ci"
        manager = ConfigurationManager(config)
        assert manager.build_profile().name == "ci"

    def test_log_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("TRAFFIC_BUDDY_LOG_LEVEL", "DEBUG")
        assert create_default_config()["logging"]["level"] == "DEBUG"


class TestMain:
    def test_list_environments(self, capsys):
        main(["--list-environments"])
        out = capsys.readouterr().out
        assert out.split() == ["ci", "development", "load", "production-verification"]

    def test_show_profile(self, capsys):
        main(["--environment", "ci", "--suite", "api-testing", "--show-profile", "--log-level", "ERROR"])
        out = capsys.readouterr().out
        assert "Environment: ci (suite: api-testing)" in out
        assert "Mocking: enabled (enforced)" in out

    def test_validate_config_file(self, tmp_path, capsys):
        config_path = tmp_path / "limits.json"
        config_path.write_text(
            json.dumps(
                {
                    "environment": "production-verification",
                    "endpoints": [{"pattern": "/api/cities", "max_requests_per_window": 20}],
                    "logging": {"level": "ERROR"},
                }
            )
        )
        main(["--config", str(config_path), "--validate"])
        assert "Configuration is valid (production-verification environment)" in capsys.readouterr().out

    def test_invalid_config_exits(self, tmp_path, capsys):
        config_path = tmp_path / "limits.json"
        config_path.write_text(json.dumps({"endpoints": [{"pattern": "/api/cities"}]}))
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(config_path), "--validate"])
        assert exc_info.value.code == 1
        assert "max_requests_per_window" in capsys.readouterr().out

    def test_unknown_environment_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--environment", "staging"])
        assert exc_info.value.code == 1
        assert "staging" in capsys.readouterr().out

    def test_generate_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        main(["--generate-config"])
        generated = tmp_path / "traffic_buddy_config.json"
        assert generated.exists()
        ConfigurationManager(json.loads(generated.read_text()))
        assert "Generated default configuration" in capsys.readouterr().out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
