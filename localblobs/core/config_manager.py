"""
Configuration management for LocalBlobs.

Server settings come from four layers, highest precedence first:

1. command-line options
2. ``LOCALBLOBS_*`` environment variables
3. a YAML or JSON configuration file
4. built-in defaults

The merged result is validated by pydantic before a server is built from it.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .logging_config import REDACTED, parse_size

logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes", "on")


def _flag(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


# Environment variable -> (path into the config dict, converter)
ENV_FIELDS: Dict[str, Tuple[Tuple[str, ...], Callable[[str], Any]]] = {
    "LOCALBLOBS_DIRECTORY": (("directory",), str),
    "LOCALBLOBS_HOST": (("host",), str),
    "LOCALBLOBS_PORT": (("port",), int),
    "LOCALBLOBS_TOKEN": (("token",), str),
    "LOCALBLOBS_DEBUG": (("debug",), _flag),
    "LOCALBLOBS_LOG_LEVEL": (("logging", "level"), str.upper),
    "LOCALBLOBS_LOG_FORMAT": (("logging", "format"), str.lower),
    "LOCALBLOBS_LOG_FILE": (("logging", "file"), str),
}


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Where and how the server logs."""

    level: LogLevel = LogLevel.INFO
    format: str = Field(default="text", description="'text' or 'json'")
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = Field(default=5, ge=0)
    module_levels: Optional[Dict[str, LogLevel]] = Field(
        default=None,
        description="Per-logger levels, e.g. {'localblobs.services.blobs': 'DEBUG'}"
    )

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v

    @field_validator("rotation_size")
    @classmethod
    def validate_rotation_size(cls, v: str) -> str:
        parse_size(v)
        return v


class BlobsConfig(BaseModel):
    """Blob server settings."""

    directory: str = Field(
        default=".localblobs",
        description="Storage root; created on start if missing"
    )
    host: str = Field(default="127.0.0.1", description="Interface to listen on")
    port: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="Listen port, 0 for an OS-assigned ephemeral port"
    )
    token: Optional[str] = Field(
        default=None,
        description="Shared secret; anonymous access when unset"
    )
    debug: bool = Field(default=False, description="Log every request and response")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Storage directory cannot be empty")
        return v

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: Optional[str]) -> Optional[str]:
        if v == "":
            raise ValueError("Token cannot be an empty string; omit it for anonymous mode")
        return v

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict, safe to log."""
        data = self.model_dump()
        if data["token"] is not None:
            data["token"] = REDACTED
        return data


class ConfigManager:
    """
    Loads and validates LocalBlobs configuration.

    Keeps the file path of the last load so ``reload`` can re-read it.
    """

    def __init__(self):
        self._config: Optional[BlobsConfig] = None
        self._config_file: Optional[Path] = None
        self._cli_overrides: Dict[str, Any] = {}

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> BlobsConfig:
        """
        Merge all configuration layers and validate the result.

        Args:
            config_file: Path to a .yaml, .yml or .json file
            cli_overrides: Command-line values; None entries mean "not given"

        Returns:
            Validated BlobsConfig

        Raises:
            FileNotFoundError: If the configuration file does not exist
            ValueError: If the file type is not supported
            ValidationError: If the merged settings are invalid
        """
        layers = []

        if config_file:
            self._config_file = Path(config_file)
            layers.append(("file", self._read_file(self._config_file)))

        layers.append(("environment", self._read_env()))

        self._cli_overrides = _drop_unset(cli_overrides or {})
        layers.append(("command line", self._cli_overrides))

        merged: Dict[str, Any] = {}
        for source, values in layers:
            if values:
                logger.debug(f"Applying {len(values)} setting(s) from {source}")
                merged = _deep_merge(merged, values)

        try:
            self._config = BlobsConfig(**merged)
        except ValidationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise

        logger.info(f"Active configuration: {json.dumps(self._config.redacted())}")
        return self._config

    @staticmethod
    def _read_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif path.suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        return data

    @staticmethod
    def _read_env() -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for name, (path, convert) in ENV_FIELDS.items():
            raw = os.getenv(name)
            if not raw:
                continue
            target = values
            for part in path[:-1]:
                target = target.setdefault(part, {})
            target[path[-1]] = convert(raw)
        return values

    def get_config(self) -> BlobsConfig:
        """
        Return the loaded configuration.

        Raises:
            RuntimeError: If ``load`` has not been called
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> BlobsConfig:
        """Load again from the same file and command-line values."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file, cli_overrides=self._cli_overrides)


def _drop_unset(values: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = _drop_unset(value)
            if not value:
                continue
        if value is not None:
            result[key] = value
    return result


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
