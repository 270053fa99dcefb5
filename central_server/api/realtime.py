"""
Real-time API endpoints for the central server.

Station nodes, desktop apps and mobile apps all connect to ``/ws``; the
session protocol decides what each may do after it authenticates.
"""

from fastapi import APIRouter, WebSocket

from ..error_types import ErrorType, create_websocket_error_response
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

realtime_router = APIRouter(tags=["realtime"])


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Serve one station or client session."""
    container = getattr(websocket.app.state, "container", None)
    server = getattr(container, "websocket_server", None)
    if server is None:
        logger.warning("WebSocket rejected, server not initialized")
        await websocket.accept()
        await websocket.send_json(
            create_websocket_error_response(ErrorType.INTERNAL_ERROR, "Service temporarily unavailable")
        )
        await websocket.close(code=1013)
        return

    await server.handle_connection(websocket)
