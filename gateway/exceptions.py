"""
Exception hierarchy for the MQTT gateway.

Every error raised by the gateway core carries an ErrorContext naming the
connection key (user and broker) it concerns, so a caller can decide whether
to retry, reassign, or alert an operator.
"""

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging.
    """

    user_id: str | None = None
    broker_id: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "user_id": self.user_id,
            "broker_id": self.broker_id,
            "session_id": self.session_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: User-friendly error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        logger.error(
            "Gateway error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class AuthenticationError(GatewayError):
    """Bearer credential missing, malformed or expired."""

    def __init__(self, message: str, context: ErrorContext | None = None, auth_type: str = "bearer", **kwargs):
        super().__init__(message, context, **kwargs)
        self.auth_type = auth_type
        self.details["auth_type"] = auth_type


class AuthorizationError(GatewayError):
    """Caller is authenticated but may not act on the resource."""

    def __init__(self, message: str, context: ErrorContext | None = None, required_role: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.required_role = required_role
        if required_role:
            self.details["required_role"] = required_role


class ValidationError(GatewayError):
    """Data validation errors. Never retried."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        field: str | None = None,
        value: Any | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.field = field
        self.value = value
        if field:
            self.details["field"] = field
        if value is not None:
            self.details["value"] = str(value)


class ConfigurationError(GatewayError):
    """Configuration and setup errors."""

    def __init__(self, message: str, context: ErrorContext | None = None, config_key: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class ResourceNotFoundError(GatewayError):
    """Resource not found errors."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_type:
            self.details["resource_type"] = resource_type
        if resource_id:
            self.details["resource_id"] = resource_id


class BrokerConnectionError(GatewayError):
    """The upstream broker could not be reached or dropped the session."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        error_kind: str = "network",
        last_error: str | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.error_kind = error_kind
        self.last_error = last_error
        self.details["error_kind"] = error_kind
        if last_error:
            self.details["last_error"] = last_error


class BrokerNotConnectedError(BrokerConnectionError):
    """Publish or subscribe was requested while no connection was established."""


class CredentialError(BrokerConnectionError):
    """The broker rejected the configured username or password."""

    def __init__(self, message: str, context: ErrorContext | None = None, **kwargs):
        kwargs.setdefault("error_kind", "credentials")
        super().__init__(message, context, **kwargs)


def create_error_context(**kwargs) -> ErrorContext:
    """
    Create an error context with the given parameters.

    Args:
        **kwargs: Context parameters

    Returns:
        ErrorContext object
    """
    return ErrorContext(**kwargs)


def handle_exception(exc: Exception, context: ErrorContext | None = None) -> GatewayError:
    """
    Convert a generic exception to a gateway error.

    Args:
        exc: The original exception
        context: Error context

    Returns:
        GatewayError instance
    """
    if isinstance(exc, GatewayError):
        return exc

    details = {"original_type": type(exc).__name__}
    if isinstance(exc, ValueError | TypeError):
        return ValidationError(str(exc), context, details=details)
    if isinstance(exc, KeyError):
        return ResourceNotFoundError(str(exc), context, details=details)
    if isinstance(exc, ConnectionError | TimeoutError):
        return BrokerConnectionError(str(exc), context, details=details)

    details["traceback"] = traceback.format_exc()
    return GatewayError(
        f"Unexpected error: {str(exc)}",
        context,
        details=details,
        user_friendly="An unexpected error occurred. Please try again.",
    )
