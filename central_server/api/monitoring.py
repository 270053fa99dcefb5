"""
Service health and session status endpoints.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..container import ApplicationContainer
from ..dependencies import get_container, get_websocket_server
from ..realtime.websocket_server import CentralWebSocketServer
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

monitoring_router = APIRouter(tags=["monitoring"])


@monitoring_router.get("/health")
async def health_check(container: ApplicationContainer = Depends(get_container)) -> JSONResponse:
    """Report store reachability and live session counts; 503 when the store is down."""
    assert container.presence_store is not None
    assert container.websocket_server is not None
    assert container.route_discovery is not None

    database_ok = await container.presence_store.ping()
    body = {
        "status": "healthy" if database_ok else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "database": "connected" if database_ok else "unreachable",
        "websocket": {
            "clients": container.websocket_server.get_client_count(),
            "authenticatedStations": len(container.websocket_server.get_authenticated_stations()),
        },
        "monitoring": {"running": container.route_discovery.is_running},
    }
    if not database_ok:
        logger.warning("Health check degraded, presence store unreachable")
    return JSONResponse(status_code=200 if database_ok else 503, content=body)


@monitoring_router.get("/api/v1/socket/status")
async def socket_status(server: CentralWebSocketServer = Depends(get_websocket_server)) -> dict[str, Any]:
    return {
        "success": True,
        "data": {
            **server.get_stats(),
            "connectedStations": server.get_authenticated_stations(),
            "clients": server.get_connected_clients(),
        },
    }
