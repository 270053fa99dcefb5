"""
Session protocol handling for station and client connections.

Inbound frames are routed through a type -> handler table. Handlers turn
messages into registry and presence-store changes and reply over the same
session. Store failures are answered with explicit error frames and never
tear down the session.
"""

# pylint: disable=too-many-instance-attributes,too-many-arguments

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ..error_types import ErrorMessages, ErrorType, create_websocket_error_response
from ..exceptions import ErrorContext, PresenceStoreError, StationAuthenticationError
from ..persistence.protocols import PresenceStore, StationRecord
from ..structured_logging.enhanced_logging_config import get_logger
from ..structured_logging.logging_context import bind_station_context
from ..sync.instant_sync_service import InstantSyncService
from .connection_models import Connection, ConnectionClass
from .connection_registry import ConnectionRegistry
from .envelope import WireMessage, build_message, parse_message, utc_now_z
from .message_broadcaster import MessageBroadcaster

logger = get_logger(__name__)

MessageHandler = Callable[[Connection, WireMessage], Awaitable[None]]
PresenceObserver = Callable[..., None]

SUPERSEDED_CLOSE_CODE = 4000
SUPERSEDED_CLOSE_REASON = "Superseded by new session"

CLOSE_CODE_NAMES = {
    1000: "Normal Closure",
    1001: "Going Away",
    1002: "Protocol Error",
    1003: "Unsupported Data",
    1006: "Abnormal Closure",
    1011: "Internal Error",
    1012: "Service Restart",
    1013: "Try Again Later",
}


def describe_close_code(code: int | None) -> str:
    """Human-readable name of a WebSocket close code."""
    return CLOSE_CODE_NAMES.get(code, "Unknown") if code is not None else "Unknown"


def build_station_status_update(
    station_id: str,
    station_name: str | None,
    is_online: bool,
    reason: str,
    **extra: Any,
) -> dict[str, Any]:
    """Presence-change push sent to every other authenticated session."""
    return build_message(
        "station_status_update",
        {
            "stationId": station_id,
            "stationName": station_name,
            "isOnline": is_online,
            "timestamp": utc_now_z(),
            "reason": reason,
            **extra,
        },
    )


class SessionProtocolHandler:
    """
    Routes inbound session messages to their handlers.

    New message types are added with register_handler; the lookup is a plain
    dict keyed by the wire type.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: MessageBroadcaster,
        presence_store: PresenceStore,
        sync_service: InstantSyncService,
        presence_observer: PresenceObserver | None = None,
    ) -> None:
        """
        Initialize the protocol handler.

        Args:
            registry: Live session registry
            broadcaster: Outbound delivery
            presence_store: Station directory and presence writes
            sync_service: Dispatcher for full syncs and sync acknowledgements
            presence_observer: Called as observer(station_id, is_online, local_server_ip=..., station_name=...)
                after every session-driven presence change
        """
        self.registry = registry
        self.broadcaster = broadcaster
        self.presence_store = presence_store
        self.sync_service = sync_service
        self.presence_observer = presence_observer

        self._handlers: dict[str, MessageHandler] = {
            "authenticate": self.handle_authenticate,
            "heartbeat": self.handle_heartbeat,
            "connection_test": self.handle_connection_test,
            "sync_request": self.handle_sync_request,
            "data_update": self.handle_data_update,
            "ip_update": self.handle_ip_update,
            "instant_sync_ack": self.handle_instant_sync_ack,
            "vehicle_sync_ack": self.handle_vehicle_sync_ack,
            "pong": self.handle_pong,
            "booking_update": self.handle_domain_update,
            "queue_update": self.handle_domain_update,
            "vehicle_update": self.handle_domain_update,
        }

    def register_handler(self, message_type: str, handler: MessageHandler) -> None:
        self._handlers[message_type] = handler
        logger.debug("Registered handler for message type", message_type=message_type)

    def get_handler(self, message_type: str) -> MessageHandler | None:
        return self._handlers.get(message_type)

    def get_supported_message_types(self) -> list[str]:
        return list(self._handlers.keys())

    # Entry points

    async def handle_raw(self, connection: Connection, raw: str) -> None:
        """Decode one text frame and dispatch it."""
        connection.mark_seen()
        try:
            message = parse_message(raw)
        except ValidationError as e:
            logger.warning("Invalid message format", connection_id=connection.connection_id, error=str(e))
            await self.reject_invalid_frame(connection)
            return
        await self.handle_message(connection, message)

    async def reject_invalid_frame(self, connection: Connection) -> None:
        """Answer a frame that cannot be decoded; the session stays open."""
        await self.broadcaster.send(
            connection,
            create_websocket_error_response(ErrorType.INVALID_FORMAT, ErrorMessages.INVALID_MESSAGE_FORMAT),
        )

    async def handle_message(self, connection: Connection, message: WireMessage) -> None:
        """Dispatch a decoded message; unknown types get an error frame."""
        handler = self.get_handler(message.type)
        if handler is None:
            logger.warning(
                "Unknown message type", message_type=message.type, connection_id=connection.connection_id
            )
            await self.broadcaster.send(
                connection,
                create_websocket_error_response(
                    ErrorType.UNKNOWN_MESSAGE_TYPE,
                    ErrorMessages.UNKNOWN_MESSAGE_TYPE.format(message_type=message.type),
                    {"messageType": message.type},
                ),
            )
            return

        try:
            await handler(connection, message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Error processing message",
                message_type=message.type,
                connection_id=connection.connection_id,
                error=str(e),
                exc_info=True,
            )
            await self.broadcaster.send(
                connection,
                create_websocket_error_response(
                    ErrorType.MESSAGE_PROCESSING_ERROR, ErrorMessages.INTERNAL_ERROR, {"messageType": message.type}
                ),
            )

    # Handlers

    async def handle_authenticate(self, connection: Connection, message: WireMessage) -> None:
        """
        Authenticate a session.

        Station nodes flip their station online, evict any previous session
        for the same station, announce themselves and receive a full vehicle
        sync. Desktop apps are validated against the station directory but do
        not drive presence. Mobile apps need no station at all.
        """
        payload = message.data
        connection_class = ConnectionClass.from_wire(payload.get("connectionType")) or ConnectionClass.STATION_NODE
        station_id = payload.get("stationId") or None

        if connection_class is ConnectionClass.MOBILE_APP:
            held = self._held_station(connection)
            self.registry.promote(connection.connection_id, station_id, None, connection_class)
            await self._release_station(held)
            await self.broadcaster.send(
                connection,
                build_message(
                    "authenticated",
                    {
                        "stationId": station_id,
                        "connectionType": connection_class.value,
                        "serverTime": utc_now_z(),
                    },
                ),
            )
            return

        try:
            station = await self._resolve_station(connection, station_id)
        except StationAuthenticationError as e:
            await self._send_auth_error(connection, e.user_friendly)
            return

        held = self._held_station(connection)
        _, evicted = self.registry.promote(connection.connection_id, station.id, station.name, connection_class)
        bind_station_context(station.id)
        await self._release_station(held)
        for previous in evicted:
            previous.close_session()
            await self._close_transport(previous, SUPERSEDED_CLOSE_CODE, SUPERSEDED_CLOSE_REASON)

        now = datetime.now(UTC)
        public_ip = payload.get("publicIp") or None
        if connection.is_station_node:
            try:
                await self.presence_store.set_presence(station.id, True, now, local_server_ip=public_ip)
            except PresenceStoreError:
                logger.error("Presence write failed during authentication", station_id=station.id)
            self._observe(station.id, True, local_server_ip=public_ip or station.local_server_ip, station_name=station.name)

        await self.broadcaster.send(
            connection,
            build_message(
                "authenticated",
                {
                    "stationId": station.id,
                    "stationName": station.name,
                    "connectionType": connection_class.value,
                    "serverTime": utc_now_z(),
                    "lastHeartbeat": now.isoformat(),
                    "publicIp": public_ip,
                },
            ),
        )
        logger.info(
            "Session authenticated",
            station_id=station.id,
            connection_type=connection_class.value,
            public_ip=public_ip,
        )

        if connection.is_station_node:
            await self.broadcaster.broadcast_to_all(
                build_station_status_update(station.id, station.name, True, "authentication_success"),
                exclude_connection_id=connection.connection_id,
            )
            await self.sync_service.send_full_sync(connection)

    async def handle_heartbeat(self, connection: Connection, message: WireMessage) -> None:
        if not connection.authenticated:
            logger.warning("Heartbeat before authentication", connection_id=connection.connection_id)
            await self.broadcaster.send(
                connection, build_message("heartbeat_error", {"message": ErrorMessages.NOT_AUTHENTICATED})
            )
            return

        connection.mark_seen()
        if connection.is_station_node and connection.station_id:
            public_ip = message.data.get("publicIp") or None
            try:
                await self.presence_store.set_presence(
                    connection.station_id, True, datetime.now(UTC), local_server_ip=public_ip
                )
            except PresenceStoreError:
                await self.broadcaster.send(
                    connection, build_message("heartbeat_error", {"message": ErrorMessages.HEARTBEAT_FAILED})
                )
                return
            self._observe(connection.station_id, True, local_server_ip=public_ip)

        await self.broadcaster.send(
            connection,
            build_message(
                "heartbeat_ack",
                {
                    "serverTime": utc_now_z(),
                    "clientTime": message.data.get("timestamp", message.timestamp),
                    "stationId": connection.station_id,
                },
            ),
        )

    async def handle_connection_test(self, connection: Connection, message: WireMessage) -> None:
        await self.broadcaster.send(
            connection,
            build_message(
                "connection_test_response",
                {
                    "serverTime": utc_now_z(),
                    "clientTime": message.data.get("timestamp", message.timestamp),
                    "authenticated": connection.authenticated,
                    "stationId": connection.station_id,
                },
            ),
        )

    async def handle_sync_request(self, connection: Connection, message: WireMessage) -> None:
        if not connection.authenticated or not connection.station_id:
            await self.broadcaster.send(
                connection, build_message("sync_error", {"message": ErrorMessages.NOT_AUTHENTICATED})
            )
            return

        logger.info("Sync requested", station_id=connection.station_id, sync_type=message.data.get("syncType"))
        success = await self.sync_service.send_full_sync(connection)
        await self.broadcaster.send(
            connection,
            build_message(
                "sync_response",
                {"stationId": connection.station_id, "syncTime": utc_now_z(), "success": success},
            ),
        )

    async def handle_data_update(self, connection: Connection, message: WireMessage) -> None:
        """Relay a station's data change to every other authenticated session."""
        if not connection.authenticated:
            await self.broadcaster.send(
                connection,
                create_websocket_error_response(ErrorType.NOT_AUTHENTICATED, ErrorMessages.NOT_AUTHENTICATED),
            )
            return

        relayed = await self.broadcaster.broadcast_to_all(
            build_message("data_update", {**message.data, "sourceStationId": connection.station_id}),
            exclude_connection_id=connection.connection_id,
        )
        logger.debug("Data update relayed", station_id=connection.station_id, recipients=relayed)

    async def handle_ip_update(self, connection: Connection, message: WireMessage) -> None:
        if not connection.authenticated or not connection.station_id:
            await self.broadcaster.send(
                connection, build_message("ip_update_error", {"message": ErrorMessages.NOT_AUTHENTICATED})
            )
            return

        public_ip = message.data.get("publicIp")
        if not public_ip:
            await self.broadcaster.send(
                connection, build_message("ip_update_error", {"message": ErrorMessages.PUBLIC_IP_REQUIRED})
            )
            return

        station_id = connection.station_id
        try:
            await self.presence_store.update_local_server_ip(station_id, public_ip, datetime.now(UTC))
        except PresenceStoreError:
            await self.broadcaster.send(
                connection, build_message("ip_update_error", {"message": ErrorMessages.IP_UPDATE_FAILED})
            )
            return

        if connection.is_station_node:
            self._observe(station_id, True, local_server_ip=public_ip, station_name=connection.station_name)
        logger.info("Station IP updated", station_id=station_id, public_ip=public_ip)

        await self.broadcaster.send(
            connection,
            build_message("ip_update_ack", {"stationId": station_id, "publicIp": public_ip, "updatedAt": utc_now_z()}),
        )
        await self.broadcaster.broadcast_to_all(
            build_message(
                "station_ip_update",
                {
                    "stationId": station_id,
                    "stationName": connection.station_name,
                    "publicIp": public_ip,
                    "timestamp": utc_now_z(),
                },
            ),
            exclude_connection_id=connection.connection_id,
        )

    async def handle_instant_sync_ack(self, connection: Connection, message: WireMessage) -> None:
        if not await self._require_authenticated(connection, message):
            return
        await self.sync_service.handle_sync_ack(message.data, connection)

    async def handle_vehicle_sync_ack(self, connection: Connection, message: WireMessage) -> None:
        if not await self._require_authenticated(connection, message):
            return
        logger.info(
            "Vehicle sync acknowledged",
            station_id=connection.station_id,
            count=message.data.get("count"),
            success=message.data.get("success"),
        )

    async def handle_pong(self, connection: Connection, message: WireMessage) -> None:
        logger.debug("Pong received", connection_id=connection.connection_id)

    async def handle_domain_update(self, connection: Connection, message: WireMessage) -> None:
        if not await self._require_authenticated(connection, message):
            return
        logger.info(
            "Domain update received",
            message_type=message.type,
            station_id=connection.station_id,
            authenticated=connection.authenticated,
        )

    # Disconnection and presence

    async def handle_disconnection(self, connection_id: str, code: int | None = None, reason: str | None = None) -> None:
        """
        Clean up a closed session.

        Idempotent. Presence is only written when the closing session was the
        station's live station-node session.
        """
        connection = self.registry.unregister(connection_id)
        if connection is None:
            return

        was_authenticated = connection.authenticated
        connection.close_session()
        logger.info(
            "Session closed",
            connection_id=connection_id,
            station_id=connection.station_id,
            code=code,
            code_name=describe_close_code(code),
            reason=reason,
            was_authenticated=was_authenticated,
        )

        if not was_authenticated or not connection.is_station_node or not connection.station_id:
            return
        if self.registry.is_station_connected(connection.station_id):
            return

        await self.mark_offline_and_broadcast(
            connection,
            "disconnection",
            disconnectCode=code,
            disconnectReason=reason or describe_close_code(code),
        )

    async def mark_offline_and_broadcast(self, connection: Connection, reason: str, **extra: Any) -> None:
        """Write the station offline, tell the monitor and dispatcher, and announce it."""
        if connection.station_id is None:
            return
        await self._mark_station_offline(connection.station_id, connection.station_name, reason, **extra)

    async def _mark_station_offline(
        self, station_id: str, station_name: str | None, reason: str, **extra: Any
    ) -> None:
        try:
            await self.presence_store.set_presence(station_id, False, datetime.now(UTC))
        except PresenceStoreError:
            logger.error("Presence write failed while marking station offline", station_id=station_id, reason=reason)
        self._observe(station_id, False)
        self.sync_service.abandon_station(station_id)
        await self.broadcaster.broadcast_to_all(
            build_station_status_update(station_id, station_name, False, reason, **extra)
        )

    # Helpers

    async def _require_authenticated(self, connection: Connection, message: WireMessage) -> bool:
        if connection.authenticated:
            return True
        logger.warning(
            "Message before authentication", message_type=message.type, connection_id=connection.connection_id
        )
        await self.broadcaster.send(
            connection,
            create_websocket_error_response(
                ErrorType.NOT_AUTHENTICATED, ErrorMessages.NOT_AUTHENTICATED, {"messageType": message.type}
            ),
        )
        return False

    @staticmethod
    def _held_station(connection: Connection) -> tuple[str, str | None] | None:
        """Station id and name this session currently drives presence for, if any."""
        if connection.authenticated and connection.is_station_node and connection.station_id:
            return connection.station_id, connection.station_name
        return None

    async def _release_station(self, held: tuple[str, str | None] | None) -> None:
        """Mark a station offline once re-authentication left it without a live node session."""
        if held is None:
            return
        station_id, station_name = held
        if self.registry.is_station_connected(station_id):
            return
        logger.info("Session re-authenticated away from station", station_id=station_id)
        await self._mark_station_offline(station_id, station_name, "reauthentication")

    def _observe(self, station_id: str, is_online: bool, **kwargs: Any) -> None:
        if self.presence_observer is None:
            return
        try:
            self.presence_observer(station_id, is_online, **kwargs)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Presence observer failed", station_id=station_id, error=str(e))

    async def _resolve_station(self, connection: Connection, station_id: str | None) -> StationRecord:
        """
        Look up the station a session claims to be.

        Raises:
            StationAuthenticationError: If the id is missing, unknown, inactive or unreadable
        """
        context = ErrorContext(connection_id=connection.connection_id, station_id=station_id)
        if not station_id:
            raise StationAuthenticationError(
                "Authentication without station id", context, user_friendly=ErrorMessages.STATION_ID_REQUIRED
            )
        try:
            station = await self.presence_store.get_station(station_id)
        except PresenceStoreError as e:
            raise StationAuthenticationError(
                f"Station lookup failed: {e.message}",
                context,
                station_id=station_id,
                user_friendly=ErrorMessages.INTERNAL_ERROR,
            ) from e
        if station is None or not station.is_active:
            raise StationAuthenticationError(
                "Unknown or inactive station",
                context,
                station_id=station_id,
                user_friendly=ErrorMessages.INVALID_STATION,
            )
        return station

    async def _send_auth_error(self, connection: Connection, text: str) -> None:
        await self.broadcaster.send(
            connection,
            build_message("auth_error", {"message": text, "errorType": ErrorType.AUTHENTICATION_FAILED.value}),
        )

    @staticmethod
    async def _close_transport(connection: Connection, code: int, reason: str) -> None:
        try:
            await connection.websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            logger.debug("Transport already closed", connection_id=connection.connection_id, error=str(e))
