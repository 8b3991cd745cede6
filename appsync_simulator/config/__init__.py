"""
Configuration module for the AppSync simulator.

This module provides type-safe, validated configuration using Pydantic BaseSettings.

Usage:
    from appsync_simulator.config import get_config

    config = get_config()
    logger.info("Configuration loaded", host=config.server.host, port=config.server.port)
"""

import sys
import threading
from functools import lru_cache
from os import getenv

from .models import AuthConfig, LoggingConfig, RealtimeConfig, ServerConfig, SimulatorConfig

__all__ = [
    "get_config",
    "reset_config",
    "AuthConfig",
    "LoggingConfig",
    "RealtimeConfig",
    "ServerConfig",
    "SimulatorConfig",
]

_config_instance: SimulatorConfig | None = None
_config_lock = threading.Lock()


def _is_test_mode() -> bool:
    """
    Detect if running in test environment.

    Returns:
        bool: True if running under pytest, False otherwise
    """
    if "pytest" in sys.modules:
        return True
    return bool(getenv("PYTEST_CURRENT_TEST"))


@lru_cache(maxsize=1)
def _get_config_cached() -> SimulatorConfig:
    """Production config loader with caching."""
    global _config_instance
    with _config_lock:
        if _config_instance is None:
            _config_instance = SimulatorConfig()
    return _config_instance


def get_config() -> SimulatorConfig:
    """
    Get simulator configuration (singleton in production, fresh in tests).

    Configuration is loaded from environment variables and .env file.

    Returns:
        SimulatorConfig: The simulator configuration

    Raises:
        ValidationError: If configuration is invalid
    """
    if _is_test_mode():
        return SimulatorConfig()
    return _get_config_cached()


def reset_config() -> None:
    """
    Reset the configuration cache.

    This is primarily used by tests to force configuration reload.
    """
    global _config_instance  # pylint: disable=global-statement
    with _config_lock:
        _get_config_cached.cache_clear()
        _config_instance = None
