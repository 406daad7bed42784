"""Core module initialization."""

from .config_manager import BlobsConfig, ConfigManager, LoggingConfig
from .lifecycle import LifecycleError, LifecycleManager, LifecycleState, ServerAddress
from .logging_config import setup_logging, get_logger

__all__ = [
    "BlobsConfig",
    "ConfigManager",
    "LoggingConfig",
    "LifecycleError",
    "LifecycleManager",
    "LifecycleState",
    "ServerAddress",
    "setup_logging",
    "get_logger",
]
