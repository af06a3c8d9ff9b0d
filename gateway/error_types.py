"""
Centralized error types for the MQTT gateway.

Used to tag error frames sent over the real-time channel so browser clients
can branch on a stable identifier instead of message text.
"""

from enum import Enum
from typing import Any


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Authentication and Authorization
    AUTHENTICATION_FAILED = "authentication_failed"
    AUTHORIZATION_DENIED = "authorization_denied"

    # Validation Errors
    VALIDATION_ERROR = "validation_error"
    INVALID_FORMAT = "invalid_format"

    # Resource Errors
    RESOURCE_NOT_FOUND = "resource_not_found"

    # Broker connectivity
    BROKER_CONNECTION_ERROR = "broker_connection_error"
    BROKER_NOT_CONNECTED = "broker_not_connected"
    BROKER_CREDENTIALS_REJECTED = "broker_credentials_rejected"
    RETRIES_EXHAUSTED = "retries_exhausted"

    # System
    INTERNAL_ERROR = "internal_error"


def create_websocket_error_data(
    error_type: ErrorType,
    message: str,
    broker_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build the payload of an `error` event for the real-time channel.

    Args:
        error_type: The type of error
        message: Human readable error message
        broker_id: Broker the error concerns, if any
        details: Additional error details (optional)

    Returns:
        Event payload dictionary
    """
    data: dict[str, Any] = {"message": message, "error_type": error_type.value}
    if broker_id is not None:
        data["brokerId"] = broker_id
    if details:
        data["details"] = details
    return data
