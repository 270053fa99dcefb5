"""
Central WebSocket server for station nodes and client apps.

Owns the per-connection receive loop, the liveness sweep that closes idle
sessions, and the outbound operations other components use to reach
stations.
"""

# pylint: disable=too-many-instance-attributes

import asyncio
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ..config.models import RealtimeConfig
from ..exceptions import PresenceStoreError
from ..monitoring.presence_events import PresenceEvent, PresenceEventBus, PresenceEventType
from ..persistence.protocols import PresenceStore
from ..structured_logging.enhanced_logging_config import get_logger
from ..structured_logging.logging_context import bind_request_context, clear_request_context
from .connection_models import Connection, ConnectionClass
from .connection_registry import ConnectionRegistry
from .envelope import build_message, utc_now_z
from .message_broadcaster import MessageBroadcaster, is_websocket_open
from .session_protocol import SessionProtocolHandler, build_station_status_update

logger = get_logger(__name__)

TIMEOUT_CLOSE_CODE = 1000
TIMEOUT_CLOSE_REASON = "Connection timeout"
SHUTDOWN_CLOSE_CODE = 1001
SHUTDOWN_CLOSE_REASON = "Server shutdown"


class CentralWebSocketServer:
    """
    Accepts station and client sessions and keeps their liveness in check.

    The server holds no global state: the registry, broadcaster and protocol
    handler are injected by the application container.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: MessageBroadcaster,
        protocol: SessionProtocolHandler,
        presence_store: PresenceStore,
        config: RealtimeConfig,
        event_bus: PresenceEventBus | None = None,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.protocol = protocol
        self.presence_store = presence_store
        self.config = config
        self.event_bus = event_bus
        self._sweep_task: asyncio.Task | None = None
        self._closed = False

        if event_bus is not None:
            event_bus.subscribe(PresenceEventType.STATION_ONLINE, self._on_presence_event)
            event_bus.subscribe(PresenceEventType.STATION_OFFLINE, self._on_presence_event)

    # Session loop

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Serve one WebSocket session until it closes.

        Cleanup always runs, whatever ended the loop.
        """
        await websocket.accept()
        connection = Connection(
            connection_id=str(uuid.uuid4()),
            websocket=websocket,
            remote_address=websocket.client.host if websocket.client else None,
        )
        self.registry.register(connection)
        bind_request_context(connection_id=connection.connection_id)
        logger.info("Session opened", remote_address=connection.remote_address)

        await self.broadcaster.send(
            connection,
            build_message(
                "connected",
                {
                    "clientId": connection.connection_id,
                    "message": "Connected to Louaj Central Server",
                    "serverTime": utc_now_z(),
                },
            ),
        )

        close_code: int | None = None
        close_reason: str | None = None
        try:
            while True:
                raw = await self._receive_frame(websocket)
                if raw is None:
                    connection.mark_seen()
                    await self.protocol.reject_invalid_frame(connection)
                    continue
                await self.protocol.handle_raw(connection, raw)
        except WebSocketDisconnect as e:
            close_code = e.code
            close_reason = e.reason or None
        except RuntimeError as e:
            # Starlette raises RuntimeError when receiving on a socket we already closed
            close_code = 1006
            close_reason = str(e)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Session loop failed", error=str(e), exc_info=True)
            close_code = 1011
            close_reason = "Internal error"
        finally:
            try:
                await self.protocol.handle_disconnection(connection.connection_id, close_code, close_reason)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Disconnect cleanup failed", error=str(e), exc_info=True)
            clear_request_context()

    @staticmethod
    async def _receive_frame(websocket: WebSocket) -> str | None:
        """
        Read the next inbound frame as text.

        Binary frames are decoded as UTF-8. Returns None for a frame that
        carries no decodable text.

        Raises:
            WebSocketDisconnect: When the peer closed the session
        """
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000), reason=message.get("reason"))
        text = message.get("text")
        if text is not None:
            return text
        data = message.get("bytes")
        if data is None:
            return None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            return None

    # Liveness

    async def sweep_connections(self, now: float | None = None) -> dict[str, int]:
        """
        Close sessions idle past connection_timeout and ping the rest.

        Returns:
            dict: counts of timed-out and pinged sessions
        """
        now = now if now is not None else time.time()
        timed_out = 0
        pinged = 0
        for connection in self.registry.all_connections():
            if connection.heartbeat_age(now) > self.config.connection_timeout:
                timed_out += 1
                await self._expire(connection)
            elif is_websocket_open(connection):
                if await self.broadcaster.send(connection, build_message("ping")):
                    pinged += 1
        if timed_out:
            logger.info("Liveness sweep closed idle sessions", timed_out=timed_out, pinged=pinged)
        return {"timedOut": timed_out, "pinged": pinged}

    async def _expire(self, connection: Connection) -> None:
        logger.warning(
            "Session timed out",
            connection_id=connection.connection_id,
            station_id=connection.station_id,
            idle_seconds=round(connection.heartbeat_age(), 1),
        )
        removed = self.registry.unregister(connection.connection_id)
        was_authenticated = connection.authenticated
        connection.close_session()
        if (
            removed is not None
            and was_authenticated
            and connection.is_station_node
            and connection.station_id
            and not self.registry.is_station_connected(connection.station_id)
        ):
            await self.protocol.mark_offline_and_broadcast(connection, "timeout")
        try:
            await connection.websocket.close(code=TIMEOUT_CLOSE_CODE, reason=TIMEOUT_CLOSE_REASON)
        except (RuntimeError, OSError) as e:
            logger.debug("Transport already closed", connection_id=connection.connection_id, error=str(e))

    async def _sweep_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.config.heartbeat_interval)
                try:
                    await self.sweep_connections()
                except Exception as e:  # pylint: disable=broad-exception-caught
                    logger.error("Liveness sweep failed", error=str(e), exc_info=True)
        except asyncio.CancelledError:
            logger.info("Liveness sweep task cancelled")
            raise

    def start(self) -> None:
        """Start the background liveness sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="realtime/liveness_sweep")
        logger.info(
            "Liveness sweep started",
            heartbeat_interval=self.config.heartbeat_interval,
            connection_timeout=self.config.connection_timeout,
        )

    async def stop(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

    # Presence events from the health monitor

    async def _on_presence_event(self, event: PresenceEvent) -> None:
        await self.broadcaster.broadcast_to_all(
            build_station_status_update(
                event.station_id,
                event.station_name,
                event.is_online,
                "health_check",
                source=event.source,
            )
        )

    # Outbound operations

    async def send_to_station(self, station_id: str, message: dict[str, Any]) -> bool:
        return await self.broadcaster.send_to_station(station_id, message)

    async def broadcast_to_all(self, message: dict[str, Any], exclude_connection_id: str | None = None) -> int:
        return await self.broadcaster.broadcast_to_all(message, exclude_connection_id)

    async def broadcast_to_class(self, connection_class: ConnectionClass | str, message: dict[str, Any]) -> int:
        return await self.broadcaster.broadcast_to_class(ConnectionClass(connection_class), message)

    # Status

    def get_client_count(self) -> int:
        return self.registry.count()

    def get_connected_clients(self) -> list[dict[str, Any]]:
        return [connection.to_dict() for connection in self.registry.all_connections()]

    def get_authenticated_stations(self) -> list[str]:
        return self.registry.authenticated_station_ids()

    def is_station_connected(self, station_id: str) -> bool:
        return self.registry.is_station_connected(station_id)

    async def get_station_status(self) -> list[dict[str, Any]]:
        """
        Presence-store rows enriched with live session information.

        Raises:
            PresenceStoreError: If the station directory cannot be read
        """
        stations = await self.presence_store.list_stations()
        now = time.time()
        status = []
        for station in stations:
            live = [
                connection
                for connection in self.registry.all_authenticated()
                if connection.station_id == station.id
            ]
            node = self.registry.find_by_station(station.id)
            status.append(
                {
                    "stationId": station.id,
                    "stationName": station.name,
                    "isActive": station.is_active,
                    "isOnline": station.is_online,
                    "lastHeartbeat": station.last_heartbeat.isoformat() if station.last_heartbeat else None,
                    "localServerIp": station.local_server_ip,
                    "connectionCount": len(live),
                    "heartbeatAgeSeconds": round(node.heartbeat_age(now), 1) if node is not None else None,
                }
            )
        return status

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.registry.stats(),
            "heartbeatInterval": self.config.heartbeat_interval,
            "connectionTimeout": self.config.connection_timeout,
            "sweepRunning": self._sweep_task is not None and not self._sweep_task.done(),
        }

    # Shutdown

    async def close(self) -> None:
        """
        Stop the sweep, mark every live station node offline and close all sockets.

        Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        await self.stop()

        if self.event_bus is not None:
            self.event_bus.unsubscribe(PresenceEventType.STATION_ONLINE, self._on_presence_event)
            self.event_bus.unsubscribe(PresenceEventType.STATION_OFFLINE, self._on_presence_event)

        station_ids = self.registry.authenticated_station_ids()
        if station_ids:
            try:
                updated = await self.presence_store.set_presence_many(station_ids, False, datetime.now(UTC))
                logger.info("Stations marked offline on shutdown", count=updated)
            except PresenceStoreError:
                logger.error("Failed to mark stations offline on shutdown", station_ids=station_ids)

        connections = self.registry.clear()
        for connection in connections:
            connection.close_session()
            try:
                await connection.websocket.close(code=SHUTDOWN_CLOSE_CODE, reason=SHUTDOWN_CLOSE_REASON)
            except (RuntimeError, OSError) as e:
                logger.debug("Transport already closed", connection_id=connection.connection_id, error=str(e))
        logger.info("WebSocket server closed", closed_connections=len(connections))
