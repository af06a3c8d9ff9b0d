"""
Configuration module for the MQTT gateway.

Settings come from the environment (and `.env`) through pydantic-settings;
see `models.py` for the prefixes each section reads.

Usage:
    from gateway.config import get_config

    config = get_config()
    retries = config.mqtt.max_retries
"""

import sys
import threading
from functools import lru_cache
from os import getenv

from .models import AppConfig

__all__ = ["get_config", "reset_config", "AppConfig"]

# Module-level config cache
_config_instance: AppConfig | None = None
_config_lock = threading.Lock()


def _is_test_mode() -> bool:
    """True under pytest, where every call must see the current environment."""
    if "pytest" in sys.modules:
        return True
    return bool(getenv("PYTEST_CURRENT_TEST"))


@lru_cache(maxsize=1)
def _get_config_cached() -> AppConfig:
    """Build the process-wide AppConfig once."""
    global _config_instance  # pylint: disable=global-statement  # Reason: process-wide configuration singleton
    with _config_lock:
        if _config_instance is None:
            _config_instance = AppConfig()
    return _config_instance


def get_config() -> AppConfig:
    """
    Return the gateway configuration.

    Cached for the process lifetime, except under pytest where each call
    builds a fresh AppConfig so monkeypatched variables take effect.

    Raises:
        pydantic.ValidationError: If configuration is invalid or required fields are missing
    """
    if _is_test_mode():
        return AppConfig()
    return _get_config_cached()


def reset_config() -> None:
    """
    Drop the cached configuration.

    Forces the next get_config() call to reload from the environment.
    """
    global _config_instance  # pylint: disable=global-statement  # Reason: process-wide configuration singleton
    with _config_lock:
        _get_config_cached.cache_clear()
        _config_instance = None
