"""
Application lifecycle management for the central server.

Startup builds (or adopts) the ApplicationContainer, initializes every
service and starts the liveness sweep and health monitor. Shutdown marks live
stations offline, closes every session and releases the database.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..container import ApplicationContainer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger("central_server.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    A container already attached to ``app.state.container`` (as tests do) is
    used as-is; otherwise one is built from configuration.
    """
    logger.info("Starting Louaj central server with ApplicationContainer...")

    container = getattr(app.state, "container", None)
    if container is None:
        container = ApplicationContainer()
        app.state.container = container

    await container.initialize()
    await container.start()
    logger.info("Central server startup complete", **container.get_status())

    try:
        yield
    finally:
        logger.info("Shutting down Louaj central server...")
        await container.shutdown()
        logger.info("Central server shutdown complete")
