"""
Tests for ConfigManager.
"""

import json
import logging

import pytest
import yaml
from pydantic import ValidationError

from localblobs.core.config_manager import (
    BlobsConfig,
    ConfigManager,
    LoggingConfig,
    LogLevel,
)


ENV_VARS = [
    "LOCALBLOBS_DIRECTORY",
    "LOCALBLOBS_HOST",
    "LOCALBLOBS_PORT",
    "LOCALBLOBS_TOKEN",
    "LOCALBLOBS_DEBUG",
    "LOCALBLOBS_LOG_LEVEL",
    "LOCALBLOBS_LOG_FORMAT",
    "LOCALBLOBS_LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the caller's environment out of these tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfigManager:
    """Test suite for ConfigManager."""

    def test_load_defaults(self):
        """Test loading default configuration."""
        config = ConfigManager().load()

        assert config.directory == ".localblobs"
        assert config.host == "127.0.0.1"
        assert config.port == 0
        assert config.token is None
        assert config.debug is False
        assert config.logging.level == LogLevel.INFO

    def test_load_from_yaml_file(self, tmp_path):
        """Test loading configuration from YAML file."""
        config_file = tmp_path / "localblobs.yaml"
        config_file.write_text(yaml.dump({
            "directory": "/srv/blobs",
            "port": 9000,
            "token": "secret",
            "logging": {"level": "DEBUG"},
        }))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.directory == "/srv/blobs"
        assert config.port == 9000
        assert config.token == "secret"
        assert config.logging.level == LogLevel.DEBUG

    def test_load_from_json_file(self, tmp_path):
        """Test loading configuration from JSON file."""
        config_file = tmp_path / "localblobs.json"
        config_file.write_text(json.dumps({"host": "::1", "debug": True}))

        config = ConfigManager().load(config_file=str(config_file))

        assert config.host == "::1"
        assert config.debug is True

    def test_empty_yaml_file(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert ConfigManager().load(config_file=str(config_file)).port == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager().load(config_file=str(tmp_path / "nope.yaml"))

    def test_unsupported_format(self, tmp_path):
        config_file = tmp_path / "config.ini"
        config_file.write_text("[server]")
        with pytest.raises(ValueError):
            ConfigManager().load(config_file=str(config_file))

    def test_env_overrides(self, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("LOCALBLOBS_DIRECTORY", "/data")
        monkeypatch.setenv("LOCALBLOBS_PORT", "8971")
        monkeypatch.setenv("LOCALBLOBS_TOKEN", "from-env")
        monkeypatch.setenv("LOCALBLOBS_DEBUG", "yes")
        monkeypatch.setenv("LOCALBLOBS_LOG_LEVEL", "warning")
        monkeypatch.setenv("LOCALBLOBS_LOG_FORMAT", "JSON")

        config = ConfigManager().load()

        assert config.directory == "/data"
        assert config.port == 8971
        assert config.token == "from-env"
        assert config.debug is True
        assert config.logging.level == LogLevel.WARNING
        assert config.logging.format == "json"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "localblobs.yaml"
        config_file.write_text(yaml.dump({"port": 1111, "logging": {"format": "json"}}))
        monkeypatch.setenv("LOCALBLOBS_PORT", "2222")
        monkeypatch.setenv("LOCALBLOBS_LOG_LEVEL", "ERROR")

        config = ConfigManager().load(config_file=str(config_file))

        assert config.port == 2222
        assert config.logging.level == LogLevel.ERROR
        assert config.logging.format == "json"

    def test_cli_overrides_env(self, monkeypatch):
        """Test that CLI arguments win over the environment."""
        monkeypatch.setenv("LOCALBLOBS_PORT", "2222")
        config = ConfigManager().load(cli_overrides={"port": 3333})
        assert config.port == 3333

    def test_cli_none_values_ignored(self, monkeypatch):
        monkeypatch.setenv("LOCALBLOBS_HOST", "0.0.0.0")
        config = ConfigManager().load(cli_overrides={"host": None, "debug": None})
        assert config.host == "0.0.0.0"
        assert config.debug is False

    def test_token_not_logged(self, caplog):
        """Test that the active configuration is logged without the token."""
        with caplog.at_level(logging.INFO, logger="localblobs.core.config_manager"):
            ConfigManager().load(cli_overrides={"token": "hunter2"})
        assert "hunter2" not in caplog.text
        assert "***REDACTED***" in caplog.text

    def test_get_config_before_load(self):
        with pytest.raises(RuntimeError):
            ConfigManager().get_config()

    def test_reload(self, tmp_path):
        """Test reloading picks up file changes."""
        config_file = tmp_path / "localblobs.yaml"
        config_file.write_text(yaml.dump({"port": 1000}))
        manager = ConfigManager()
        manager.load(config_file=str(config_file))

        config_file.write_text(yaml.dump({"port": 2000}))

        assert manager.reload().port == 2000
        assert manager.get_config().port == 2000


class TestBlobsConfig:
    """Test configuration validation."""

    @pytest.mark.parametrize("port", [-1, 65536])
    def test_invalid_port(self, port):
        with pytest.raises(ValidationError):
            BlobsConfig(port=port)

    def test_empty_token_rejected(self):
        with pytest.raises(ValidationError):
            BlobsConfig(token="")

    def test_empty_directory_rejected(self):
        with pytest.raises(ValidationError):
            BlobsConfig(directory="  ")

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            BlobsConfig(logging={"level": "LOUD"})

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")

    def test_invalid_rotation_size(self):
        with pytest.raises(ValidationError):
            LoggingConfig(rotation_size="lots")

    def test_redacted(self):
        assert BlobsConfig(token="secret").redacted()["token"] == "***REDACTED***"
        assert BlobsConfig().redacted()["token"] is None


class TestReloadKeepsCommandLine:
    """Test that reload re-applies command-line values."""

    def test_reload_keeps_overrides(self, tmp_path):
        config_file = tmp_path / "localblobs.yaml"
        config_file.write_text(yaml.dump({"port": 1000, "host": "0.0.0.0"}))
        manager = ConfigManager()
        manager.load(config_file=str(config_file), cli_overrides={"port": 5000})

        config_file.write_text(yaml.dump({"port": 1000, "host": "::"}))
        config = manager.reload()

        assert config.port == 5000
        assert config.host == "::"
