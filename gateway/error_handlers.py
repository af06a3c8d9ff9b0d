"""
Centralized error handling for the gateway FastAPI application.

Converts gateway exceptions, HTTP exceptions and unexpected failures into a
single JSON error envelope.
"""

import traceback
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    BrokerConnectionError,
    ConfigurationError,
    CredentialError,
    GatewayError,
    ResourceNotFoundError,
    ValidationError,
    create_error_context,
    handle_exception,
)
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

# Detail keys that may be echoed back to clients
_SAFE_DETAIL_KEYS = {"field", "resource_type", "resource_id", "error_kind", "required_role", "auth_type"}


class ErrorResponse:
    """Standardized error response format."""

    def __init__(
        self,
        error_type: str,
        message: str,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
        status_code: int = 500,
    ):
        self.error_type = error_type
        self.message = message
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "user_friendly": self.user_friendly,
                "details": self.details,
            }
        }

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse."""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def create_error_response(error: GatewayError) -> ErrorResponse:
    """
    Create a standardized error response from a gateway error.

    Only allow-listed detail keys are exposed; broker credentials and
    tracebacks stay in the logs.
    """
    details = {key: value for key, value in error.details.items() if key in _SAFE_DETAIL_KEYS}
    return ErrorResponse(
        error_type=error.__class__.__name__,
        message=error.message,
        details=details,
        user_friendly=error.user_friendly,
        status_code=_get_status_code_for_error(error),
    )


def _get_status_code_for_error(error: GatewayError) -> int:
    """Get appropriate HTTP status code for error type."""
    if isinstance(error, AuthenticationError):
        return 401
    elif isinstance(error, AuthorizationError):
        return 403
    elif isinstance(error, ValidationError):
        return 400
    elif isinstance(error, ResourceNotFoundError):
        return 404
    elif isinstance(error, CredentialError):
        return 502
    elif isinstance(error, BrokerConnectionError):
        return 503
    elif isinstance(error, ConfigurationError):
        return 500
    else:
        return 500


async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """
    Handle gateway-specific exceptions.

    Args:
        request: FastAPI request object
        exc: Gateway exception

    Returns:
        JSONResponse with error details
    """
    if not exc.context.request_id:
        exc.context.request_id = str(request.url)

    error_response = create_error_response(exc)
    logger.warning(
        "Gateway exception handled",
        error_type=exc.__class__.__name__,
        message=exc.message,
        path=str(request.url),
        method=request.method,
        status_code=error_response.status_code,
    )
    return error_response.to_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    context = create_error_context(
        request_id=str(request.url),
        metadata={"path": str(request.url), "method": request.method},
    )
    gateway_error = handle_exception(exc, context)
    error_response = create_error_response(gateway_error)

    logger.error(
        "Unhandled exception converted to gateway error",
        original_type=type(exc).__name__,
        original_message=str(exc),
        gateway_error_type=gateway_error.__class__.__name__,
        path=str(request.url),
        method=request.method,
        status_code=error_response.status_code,
        traceback=traceback.format_exc(),
    )
    return error_response.to_response()


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP exceptions in the standard error envelope."""
    error_type = {
        401: "AuthenticationError",
        403: "AuthorizationError",
        404: "ResourceNotFoundError",
    }.get(exc.status_code, "HTTPException")
    response = ErrorResponse(error_type=error_type, message=str(exc.detail), status_code=exc.status_code)

    logger.warning(
        "HTTP exception handled",
        status_code=exc.status_code,
        detail=exc.detail,
        path=str(request.url),
        method=request.method,
    )
    json_response = response.to_response()
    if exc.headers:
        json_response.headers.update(exc.headers)
    return json_response


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation failures as 400 errors."""
    errors = exc.errors()
    first_field = ".".join(str(part) for part in errors[0]["loc"]) if errors else None
    response = ErrorResponse(
        error_type="ValidationError",
        message="Request validation failed",
        details={"field": first_field, "errors": [error.get("msg") for error in errors]},
        status_code=400,
    )
    logger.warning("Request validation failed", path=str(request.url), field=first_field)
    return response.to_response()


def register_error_handlers(app: FastAPI) -> None:
    """
    Register all error handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(GatewayError, gateway_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Error handlers registered with FastAPI application")
