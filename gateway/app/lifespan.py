"""
Application lifespan management.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..container import ApplicationContainer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build (or reuse an injected) ApplicationContainer for the app's lifetime.

    Shutdown disconnects every broker connection and closes every session
    before tracked background tasks are cancelled.
    """
    container = getattr(app.state, "container", None)
    if container is None:
        container = ApplicationContainer()
        app.state.container = container
    await container.initialize()
    logger.info("MQTT gateway started")
    try:
        yield
    finally:
        logger.info("MQTT gateway shutting down")
        await container.shutdown()
