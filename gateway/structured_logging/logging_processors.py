"""
Logging processors for structlog event processing.

Redacts broker credentials and bearer tokens before anything is rendered and
stamps each entry with a correlation ID.
"""

import re
import uuid
from typing import Any

# Underscores count as word separators, so broker_password and jwt_secret match
_SENSITIVE_PATTERNS = [
    re.compile(r"(?<![a-z])password(?![a-z])"),
    re.compile(r"(?<![a-z])token(?![a-z])"),
    re.compile(r"(?<![a-z])secret(?![a-z])"),
    re.compile(r"_key$"),
    re.compile(r"(?<![a-z])credentials?(?![a-z])"),
    re.compile(r"(?<![a-z])jwt(?![a-z])"),
    re.compile(r"(?<![a-z])bearer(?![a-z])"),
    re.compile(r"(?<![a-z])authorization(?![a-z])"),
]

# Field names that are safe even though they match a pattern above
_SAFE_FIELDS = {"connection_key", "token_present", "has_password"}


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SAFE_FIELDS:
        return False
    return any(pattern.search(key_lower) for pattern in _SENSITIVE_PATTERNS)


def sanitize_sensitive_data(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Remove sensitive data from log entries.

    Broker passwords and bearer tokens frequently travel alongside endpoint
    snapshots, so this runs first in the processor chain.

    Args:
        _logger: Logger instance (unused)
        _name: Logger name (unused)
        event_dict: Event dictionary to sanitize

    Returns:
        Sanitized event dictionary
    """

    def sanitize_dict(d: dict[str, Any]) -> dict[str, Any]:
        """Recursively sanitize dictionary values."""
        sanitized: dict[str, Any] = {}
        for key, value in d.items():
            if _is_sensitive(str(key)):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)


def add_correlation_id(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add correlation ID to log entries if not already present.

    Request handlers bind one through contextvars; background tasks get a
    fresh one per entry.
    """
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = str(uuid.uuid4())
    return event_dict
