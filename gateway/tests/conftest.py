"""
Test configuration for the MQTT gateway test suite.
"""

import os

# Set before any gateway module builds its config
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-key-for-testing-only")
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("LOGGING_LEVEL", "DEBUG")
os.environ.setdefault("SERVER_PORT", "54731")
os.environ.setdefault("SERVER_HOST", "127.0.0.1")

import pytest  # noqa: E402

from gateway.config import reset_config  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_config():
    reset_config()
    yield
    reset_config()
