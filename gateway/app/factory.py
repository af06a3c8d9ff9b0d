"""
FastAPI application factory for the MQTT gateway.

This module handles FastAPI app creation, middleware configuration,
and router registration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.auth import auth_router
from ..api.brokers import broker_router
from ..api.health import health_router
from ..api.messages import message_router
from ..api.real_time import realtime_router
from ..container import ApplicationContainer
from ..error_handlers import register_error_handlers
from ..structured_logging.enhanced_logging_config import get_logger
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(container: ApplicationContainer | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Pre-built container, mainly for tests; built at startup when omitted

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    app = FastAPI(
        title="MQTT Gateway API",
        description="Multi-tenant gateway relaying MQTT brokers to browser sessions",
        version="0.1.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container
        config = container.config
    else:
        from ..config import get_config

        config = get_config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_credentials=config.cors.allow_credentials,
        allow_methods=config.cors.allow_methods,
        allow_headers=config.cors.allow_headers,
    )
    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(broker_router)
    app.include_router(message_router)
    app.include_router(realtime_router)

    logger.info("FastAPI application created", cors_origins=config.cors.allow_origins)
    return app
