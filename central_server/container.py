"""
ApplicationContainer: wires the station connectivity layer together.

The container owns every coordination object (registry, protocol handler,
WebSocket server, sync dispatcher and health monitor) and hands them to the
FastAPI app through ``app.state.container``. Stores and the probe transport
can be injected, which is how tests run the whole stack without a database.
"""

# pylint: disable=too-many-instance-attributes

from typing import Any

import httpx
from anyio import Lock

from .config import get_config
from .config.models import AppConfig
from .database import DatabaseManager
from .monitoring.presence_events import PresenceEvent, PresenceEventBus, PresenceEventType
from .monitoring.route_discovery_service import RouteDiscoveryService
from .persistence.protocols import EntitySnapshotStore, PresenceStore
from .persistence.repositories import StationRepository, VehicleRepository
from .realtime.connection_registry import ConnectionRegistry
from .realtime.message_broadcaster import MessageBroadcaster
from .realtime.session_protocol import SessionProtocolHandler
from .realtime.websocket_server import CentralWebSocketServer
from .structured_logging.enhanced_logging_config import get_logger
from .sync.instant_sync_service import InstantSyncService

logger = get_logger(__name__)


class ApplicationContainer:
    """
    Dependency injection container for the central server.

    Services are not built in __init__; call initialize(), then start().
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        presence_store: PresenceStore | None = None,
        snapshot_store: EntitySnapshotStore | None = None,
        probe_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config: AppConfig = config or get_config()
        self.database_manager: DatabaseManager | None = None
        self.presence_store: PresenceStore | None = presence_store
        self.snapshot_store: EntitySnapshotStore | None = snapshot_store
        self.probe_transport = probe_transport

        self.event_bus: PresenceEventBus | None = None
        self.registry: ConnectionRegistry | None = None
        self.broadcaster: MessageBroadcaster | None = None
        self.sync_service: InstantSyncService | None = None
        self.route_discovery: RouteDiscoveryService | None = None
        self.protocol: SessionProtocolHandler | None = None
        self.websocket_server: CentralWebSocketServer | None = None

        self._initialized = False
        self._started = False
        self._initialization_lock = Lock()

        logger.info("ApplicationContainer created (not yet initialized)")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Build every service in dependency order."""
        async with self._initialization_lock:
            if self._initialized:
                logger.warning("Container already initialized - skipping re-initialization")
                return

            logger.info("Initializing ApplicationContainer...")

            if self.presence_store is None or self.snapshot_store is None:
                self.database_manager = DatabaseManager(self.config.database)
                session_maker = self.database_manager.get_session_maker()
                if self.presence_store is None:
                    self.presence_store = StationRepository(session_maker)
                if self.snapshot_store is None:
                    self.snapshot_store = VehicleRepository(session_maker)
                if self.config.database.create_tables:
                    await self.database_manager.create_tables()

            self.event_bus = PresenceEventBus()
            self.registry = ConnectionRegistry()
            self.broadcaster = MessageBroadcaster(self.registry)
            self.sync_service = InstantSyncService(
                self.registry, self.broadcaster, self.snapshot_store, self.config.sync
            )
            self.route_discovery = RouteDiscoveryService(
                self.presence_store,
                self.config.monitoring,
                self.event_bus,
                transport=self.probe_transport,
                has_live_session=self.registry.is_station_connected,
            )
            self.protocol = SessionProtocolHandler(
                self.registry,
                self.broadcaster,
                self.presence_store,
                self.sync_service,
                presence_observer=self.route_discovery.observe_presence,
            )
            self.websocket_server = CentralWebSocketServer(
                self.registry,
                self.broadcaster,
                self.protocol,
                self.presence_store,
                self.config.realtime,
                event_bus=self.event_bus,
            )
            self.event_bus.subscribe(PresenceEventType.STATION_OFFLINE, self._abandon_offline_station)

            self._initialized = True
            logger.info("ApplicationContainer initialized")

    def _abandon_offline_station(self, event: PresenceEvent) -> None:
        if self.sync_service is not None:
            self.sync_service.abandon_station(event.station_id)

    async def start(self) -> None:
        """Start the background loops: liveness sweep and, when enabled, the health monitor."""
        if not self._initialized:
            await self.initialize()
        if self._started:
            return

        assert self.websocket_server is not None
        assert self.route_discovery is not None

        self.websocket_server.start()
        if self.config.monitoring.enabled:
            await self.route_discovery.start()
        else:
            await self.route_discovery.initialize()
            logger.info("Station health monitoring disabled")
        self._started = True

    async def shutdown(self) -> None:
        """Stop loops and close sessions in reverse dependency order."""
        logger.info("Shutting down ApplicationContainer...")

        if self.route_discovery is not None:
            await self.route_discovery.stop()
        if self.websocket_server is not None:
            await self.websocket_server.close()
        if self.sync_service is not None:
            await self.sync_service.shutdown()
        if self.database_manager is not None:
            await self.database_manager.close()

        self._started = False
        logger.info("ApplicationContainer shutdown complete")

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "started": self._started,
            "monitoringEnabled": self.config.monitoring.enabled,
        }
