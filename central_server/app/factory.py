"""
FastAPI application factory for the Louaj central server.

This module handles FastAPI app creation, CORS configuration and router
registration.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..api.monitoring import monitoring_router
from ..api.realtime import realtime_router
from ..api.route_discovery import route_discovery_router
from ..api.sync import sync_router
from ..config import get_config
from ..container import ApplicationContainer
from ..structured_logging.enhanced_logging_config import get_logger
from .lifespan import lifespan

logger = get_logger(__name__)


def create_app(container: ApplicationContainer | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Pre-built container to use instead of one built at startup

    Returns:
        FastAPI: The configured FastAPI application instance
    """
    app = FastAPI(
        title="Louaj Central Server",
        description="Station connectivity, instant sync and route discovery for Louaj stations",
        version="1.0.0",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    cors = (container.config if container is not None else get_config()).cors
    logger.info(
        "CORS configuration",
        allow_origins=cors.allow_origins,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        allow_credentials=cors.allow_credentials,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.allow_origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
    )

    app.include_router(monitoring_router)
    app.include_router(realtime_router)
    app.include_router(route_discovery_router)
    app.include_router(sync_router)

    return app
