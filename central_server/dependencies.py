"""
Dependency injection providers for the central server.

Routes reach services through the ApplicationContainer attached to
``app.state.container`` by the lifespan (or by tests).
"""

from fastapi import Depends, Request

from .container import ApplicationContainer
from .monitoring.route_discovery_service import RouteDiscoveryService
from .realtime.websocket_server import CentralWebSocketServer
from .structured_logging.enhanced_logging_config import get_logger
from .sync.instant_sync_service import InstantSyncService

logger = get_logger(__name__)


def get_container(request: Request) -> ApplicationContainer:
    """
    Get the application container from request state.

    This is the base dependency that all other dependencies use.
    """
    container = getattr(request.app.state, "container", None)
    if container is None or not container.is_initialized:
        raise RuntimeError(
            "ApplicationContainer not found in app.state - ensure container is initialized in lifespan context"
        )
    return container


def get_websocket_server(container: ApplicationContainer = Depends(get_container)) -> CentralWebSocketServer:
    assert container.websocket_server is not None
    return container.websocket_server


def get_sync_service(container: ApplicationContainer = Depends(get_container)) -> InstantSyncService:
    assert container.sync_service is not None
    return container.sync_service


def get_route_discovery(container: ApplicationContainer = Depends(get_container)) -> RouteDiscoveryService:
    assert container.route_discovery is not None
    return container.route_discovery
