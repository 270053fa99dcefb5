"""
Outbound delivery to station and client sessions.

Every write to a socket goes through MessageBroadcaster.send so failures are
logged in one place and never propagate into protocol handling.
"""

import asyncio
from typing import Any

from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_models import Connection, ConnectionClass
from .connection_registry import ConnectionRegistry

logger = get_logger(__name__)


def is_websocket_open(connection: Connection) -> bool:
    """Return True while both sides of the WebSocket are connected."""
    websocket = connection.websocket
    client_state = getattr(websocket, "client_state", None)
    application_state = getattr(websocket, "application_state", WebSocketState.CONNECTED)
    return client_state == WebSocketState.CONNECTED and application_state == WebSocketState.CONNECTED


class MessageBroadcaster:
    """
    Sends wire messages to one, several or all registered sessions.

    Broadcasts are delivered concurrently; per-connection ordering is kept
    because each send to a given socket is awaited before the next one
    issued for it.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def send(self, connection: Connection, message: dict[str, Any]) -> bool:
        """
        Send a message to a single connection.

        Returns:
            bool: True if the frame was written to the socket
        """
        if not is_websocket_open(connection):
            logger.debug(
                "Skipping send to closed connection",
                connection_id=connection.connection_id,
                message_type=message.get("type"),
            )
            return False
        try:
            await connection.websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(
                "Failed to send message",
                connection_id=connection.connection_id,
                station_id=connection.station_id,
                message_type=message.get("type"),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def send_to_station(self, station_id: str, message: dict[str, Any]) -> bool:
        """Send to the station's live station-node session, if any."""
        connection = self.registry.find_by_station(station_id)
        if connection is None:
            logger.debug("Station not connected", station_id=station_id, message_type=message.get("type"))
            return False
        return await self.send(connection, message)

    async def broadcast(self, connections: list[Connection], message: dict[str, Any]) -> int:
        """
        Send to each connection concurrently.

        Returns:
            int: Number of successful deliveries
        """
        if not connections:
            return 0
        results = await asyncio.gather(*(self.send(connection, message) for connection in connections))
        delivered = sum(1 for result in results if result)
        logger.debug(
            "Broadcast complete",
            message_type=message.get("type"),
            targets=len(connections),
            delivered=delivered,
        )
        return delivered

    async def broadcast_to_all(self, message: dict[str, Any], exclude_connection_id: str | None = None) -> int:
        """Send to every authenticated session except the excluded one."""
        targets = [
            connection
            for connection in self.registry.all_authenticated()
            if connection.connection_id != exclude_connection_id
        ]
        return await self.broadcast(targets, message)

    async def broadcast_to_class(self, connection_class: ConnectionClass, message: dict[str, Any]) -> int:
        """Send to every authenticated session of one class (e.g. all mobile apps)."""
        return await self.broadcast(self.registry.all_authenticated(connection_class), message)
