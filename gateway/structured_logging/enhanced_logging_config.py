"""
Structlog-based logging configuration for the MQTT gateway.

This is the main entry point for the logging system. Application code obtains
loggers through get_logger() and never calls structlog.get_logger() directly.
"""

# pylint: disable=too-few-public-methods  # Reason: focused logging helpers

import json
import logging
import sys
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.stdlib import BoundLogger, LoggerFactory

from .logging_processors import add_correlation_id, sanitize_sensitive_data


class _LoggingState:
    initialized: bool = False
    signature: str | None = None


_logging_state = _LoggingState()


def configure_structlog(log_level: str = "INFO", log_format: str = "human", disabled: bool = False) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "human" for key=value lines, "json" for one JSON object per line
        disabled: Route everything to a null handler
    """
    base_processors: list[Any] = [
        merge_contextvars,
        # Security first - nothing below may see raw credentials
        sanitize_sensitive_data,
        add_correlation_id,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "logger", "event"])

    root = logging.getLogger()
    root.handlers = []
    if disabled:
        root.addHandler(logging.NullHandler())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    structlog.configure(
        processors=base_processors + [renderer],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up logging once per process.

    Args:
        config: Logging section as produced by LoggingConfig.to_dict()
        force_reconfigure: When True, reconfigure even if already initialized
    """
    config_signature = json.dumps(config, sort_keys=True, default=str)

    if _logging_state.initialized and not force_reconfigure:
        get_logger(__name__).debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_logging_state.signature,
        )
        return

    log_level = config.get("level", "INFO")
    log_format = config.get("format", "human")
    disabled = config.get("disable_logging", False)

    configure_structlog(log_level, log_format, disabled)
    if not disabled:
        _configure_uvicorn_logging()

    get_logger(__name__).info(
        "Logging system initialized",
        environment=config.get("environment", "local"),
        log_level=log_level,
        log_format=log_format,
    )

    _logging_state.initialized = True
    _logging_state.signature = config_signature


def _configure_uvicorn_logging() -> None:
    """Make uvicorn's loggers propagate into the structlog pipeline."""
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True


def bind_request_context(**context: Any) -> None:
    """Bind key/value pairs to every log entry emitted from the current task."""
    bind_contextvars(**context)


def clear_request_context() -> None:
    """Drop all context bound with bind_request_context()."""
    clear_contextvars()


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a Structlog logger with the specified name.

    This is the public API for obtaining loggers.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured Structlog logger instance
    """
    return structlog.get_logger(name)
