"""
Instant sync dispatcher.

Pushes authoritative entity mutations to station-node sessions and tracks
each push until the station acknowledges it. Unacknowledged pushes are
re-sent to the station's current session after every ack timeout, up to
``max_retries`` resends, and then dropped. Nothing is persisted: pending
pushes do not survive a restart, and the full sync a station receives on
reconnect reconciles whatever was lost.
"""

# pylint: disable=too-many-instance-attributes,too-many-arguments

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..config.models import SyncConfig
from ..exceptions import DatabaseError
from ..persistence.protocols import EntitySnapshotStore
from ..realtime.connection_models import Connection
from ..realtime.connection_registry import ConnectionRegistry
from ..realtime.envelope import build_message, new_message_id, utc_now_z
from ..realtime.message_broadcaster import MessageBroadcaster
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class SyncEntityType(str, Enum):
    """Entity kinds that can be pushed to station nodes."""

    STAFF = "staff"
    VEHICLE = "vehicle"
    ROUTE = "route"
    STATION = "station"
    DESTINATION = "destination"
    GOVERNORATE = "governorate"
    DELEGATION = "delegation"


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class PendingSync:
    """A push that has been sent and is awaiting its instant_sync_ack."""

    sync_id: str
    entity_type: SyncEntityType
    operation: SyncOperation
    data: dict[str, Any]
    target_station_id: str
    connection_id: str
    sent_at: float = field(default_factory=time.time)
    retry_count: int = 0

    def to_message(self) -> dict[str, Any]:
        return build_message(
            "instant_sync",
            {
                "syncId": self.sync_id,
                "syncType": self.entity_type.value,
                "entityType": self.entity_type.value,
                "operation": self.operation.value,
                "data": self.data,
                "stationId": self.target_station_id,
                "retryCount": self.retry_count,
                "sentAt": int(self.sent_at * 1000),
            },
            message_id=self.sync_id,
        )


@dataclass
class SyncStats:
    sent: int = 0
    resent: int = 0
    acknowledged: int = 0
    rejected: int = 0
    failed: int = 0
    abandoned: int = 0


class InstantSyncService:
    """
    Tracked, bounded-retry delivery of entity changes to station nodes.

    Targets are resolved from the ConnectionRegistry at send time and again
    at every resend, never cached.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: MessageBroadcaster,
        snapshot_store: EntitySnapshotStore,
        config: SyncConfig,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.snapshot_store = snapshot_store
        self.config = config
        self._pending: dict[str, PendingSync] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self.stats = SyncStats()

    # Generic push

    async def sync_entity(
        self,
        entity_type: SyncEntityType | str,
        operation: SyncOperation | str,
        data: dict[str, Any],
        *,
        station_id: str | None = None,
        station_ids: Iterable[str] | None = None,
        exclude_station_id: str | None = None,
    ) -> list[str]:
        """
        Push one entity change.

        Args:
            entity_type: Kind of entity
            operation: CREATE, UPDATE or DELETE
            data: Entity payload
            station_id: Deliver to this station only
            station_ids: Deliver to exactly these stations
            exclude_station_id: With no explicit target, skip this station

        Returns:
            list[str]: syncIds of the pushes actually sent, one per reached station

        Raises:
            ValueError: If entity_type or operation is not recognised
        """
        entity = SyncEntityType(entity_type)
        op = SyncOperation(operation)
        if station_ids is not None:
            station_ids = list(station_ids)

        targets = self._resolve_targets(station_id, station_ids, exclude_station_id)
        if not targets:
            logger.info(
                "No connected stations for sync",
                entity_type=entity.value,
                operation=op.value,
                station_id=station_id,
                station_ids=station_ids,
            )
            return []

        sync_ids: list[str] = []
        for connection in targets:
            pending = PendingSync(
                sync_id=new_message_id(),
                entity_type=entity,
                operation=op,
                data=data,
                target_station_id=connection.station_id or "",
                connection_id=connection.connection_id,
            )
            if await self.broadcaster.send(connection, pending.to_message()):
                self._pending[pending.sync_id] = pending
                self._arm_timer(pending.sync_id)
                self.stats.sent += 1
                sync_ids.append(pending.sync_id)
            else:
                logger.warning(
                    "Instant sync not delivered",
                    sync_id=pending.sync_id,
                    station_id=pending.target_station_id,
                    entity_type=entity.value,
                )

        logger.info(
            "Instant sync sent",
            entity_type=entity.value,
            operation=op.value,
            targets=len(targets),
            delivered=len(sync_ids),
        )
        return sync_ids

    def _resolve_targets(
        self,
        station_id: str | None,
        station_ids: Iterable[str] | None,
        exclude_station_id: str | None,
    ) -> list[Connection]:
        if station_id is not None:
            connection = self.registry.find_by_station(station_id)
            return [connection] if connection is not None else []

        if station_ids is not None:
            targets = []
            for target_id in dict.fromkeys(station_ids):
                connection = self.registry.find_by_station(target_id)
                if connection is not None:
                    targets.append(connection)
            return targets

        connections = (self.registry.find_by_station(target_id) for target_id in self.registry.authenticated_station_ids())
        return [
            connection
            for connection in connections
            if connection is not None and connection.station_id != exclude_station_id
        ]

    # Entity wrappers

    async def sync_staff(self, operation: SyncOperation | str, staff: dict[str, Any], station_id: str | None = None) -> list[str]:
        """Staff records belong to one station; broadcast when none is given."""
        return await self.sync_entity(SyncEntityType.STAFF, operation, staff, station_id=station_id or staff.get("stationId"))

    async def sync_route(self, operation: SyncOperation | str, route: dict[str, Any]) -> list[str]:
        return await self.sync_entity(SyncEntityType.ROUTE, operation, route)

    async def sync_vehicle(
        self,
        operation: SyncOperation | str,
        vehicle: dict[str, Any],
        station_ids: Iterable[str] | None = None,
    ) -> list[str]:
        """Vehicles go to their authorized stations when known."""
        if station_ids is None and vehicle.get("authorizedStationIds") is not None:
            station_ids = vehicle["authorizedStationIds"]
        return await self.sync_entity(SyncEntityType.VEHICLE, operation, vehicle, station_ids=station_ids)

    async def sync_station(self, operation: SyncOperation | str, station: dict[str, Any]) -> list[str]:
        return await self.sync_entity(SyncEntityType.STATION, operation, station)

    async def sync_geographic_data(
        self,
        entity_type: SyncEntityType | str,
        operation: SyncOperation | str,
        data: dict[str, Any],
    ) -> list[str]:
        entity = SyncEntityType(entity_type)
        if entity not in (SyncEntityType.GOVERNORATE, SyncEntityType.DELEGATION, SyncEntityType.DESTINATION):
            raise ValueError(f"Not a geographic entity type: {entity.value}")
        return await self.sync_entity(entity, operation, data)

    # Vehicle snapshots

    async def send_full_sync(self, connection: Connection) -> bool:
        """
        Send the station's full vehicle snapshot to one connection.

        Snapshot pushes are not ack-tracked; a store failure is reported to
        the station as vehicle_sync_error.
        """
        station_id = connection.station_id
        if station_id is None:
            return False
        try:
            vehicles = await self.snapshot_store.get_station_vehicles(station_id)
        except DatabaseError as e:
            logger.error("Full vehicle sync failed", station_id=station_id, error=str(e))
            await self.broadcaster.send(
                connection,
                build_message("vehicle_sync_error", {"stationId": station_id, "error": "Failed to load vehicles"}),
            )
            return False

        message = build_message(
            "vehicle_sync_full",
            {"vehicles": vehicles, "stationId": station_id, "syncTime": utc_now_z(), "count": len(vehicles)},
        )
        sent = await self.broadcaster.send(connection, message)
        logger.info("Full vehicle sync sent", station_id=station_id, count=len(vehicles), delivered=sent)
        return sent

    async def broadcast_vehicle_change(self, vehicle_id: str, operation: SyncOperation | str) -> int:
        """
        Send vehicle_sync_update or vehicle_sync_delete to the vehicle's authorized stations.

        Returns:
            int: Number of stations reached
        """
        op = SyncOperation(operation)
        vehicle = await self.snapshot_store.get_vehicle(vehicle_id)
        if vehicle is None:
            logger.warning("Vehicle not found for change broadcast", vehicle_id=vehicle_id)
            return 0

        message_type = "vehicle_sync_delete" if op is SyncOperation.DELETE else "vehicle_sync_update"
        payload = {"vehicleId": vehicle_id, "operation": op.value, "syncTime": utc_now_z()}
        if op is not SyncOperation.DELETE:
            payload["vehicle"] = vehicle

        delivered = 0
        for station_id in vehicle.get("authorizedStationIds", []):
            if await self.broadcaster.send_to_station(station_id, build_message(message_type, payload)):
                delivered += 1
        logger.info("Vehicle change broadcast", vehicle_id=vehicle_id, message_type=message_type, delivered=delivered)
        return delivered

    # Acknowledgement and timeout

    async def handle_sync_ack(self, payload: dict[str, Any], connection: Connection | None = None) -> bool:
        """
        Resolve an instant_sync_ack.

        Unknown or repeated syncIds are logged and ignored.

        Returns:
            bool: True if a pending push was resolved
        """
        sync_id = payload.get("syncId")
        pending = self._pending.get(sync_id) if sync_id else None
        if pending is None:
            logger.warning("Ack for unknown syncId", sync_id=sync_id)
            return False

        if connection is not None and connection.station_id != pending.target_station_id:
            logger.warning(
                "Ack from unexpected station",
                sync_id=sync_id,
                expected_station_id=pending.target_station_id,
                station_id=connection.station_id,
            )
            return False

        self._resolve(sync_id)
        if payload.get("success", True):
            self.stats.acknowledged += 1
            logger.debug(
                "Instant sync acknowledged",
                sync_id=sync_id,
                station_id=pending.target_station_id,
                latency_ms=int((time.time() - pending.sent_at) * 1000),
            )
        else:
            self.stats.rejected += 1
            logger.error(
                "Station rejected instant sync",
                sync_id=sync_id,
                station_id=pending.target_station_id,
                entity_type=pending.entity_type.value,
                error=payload.get("error"),
            )
        return True

    async def handle_sync_timeout(self, sync_id: str) -> None:
        """
        Process an elapsed ack timeout for one push.

        Resends to the station's current session while retries remain, and
        drops the push once they are exhausted or the station is gone.
        """
        pending = self._pending.get(sync_id)
        if pending is None:
            return

        if pending.retry_count >= self.config.max_retries:
            self._resolve(sync_id)
            self.stats.failed += 1
            logger.error(
                "Instant sync failed after max retries",
                sync_id=sync_id,
                station_id=pending.target_station_id,
                entity_type=pending.entity_type.value,
                retries=pending.retry_count,
            )
            return

        if not self.config.auto_resend:
            pending.retry_count += 1
            logger.warning("Instant sync not acknowledged", sync_id=sync_id, retry_count=pending.retry_count)
            self._arm_timer(sync_id)
            return

        connection = self.registry.find_by_station(pending.target_station_id)
        if connection is None:
            self._resolve(sync_id)
            self.stats.abandoned += 1
            logger.warning(
                "Instant sync abandoned, station disconnected",
                sync_id=sync_id,
                station_id=pending.target_station_id,
            )
            return

        pending.retry_count += 1
        pending.connection_id = connection.connection_id
        pending.sent_at = time.time()
        self.stats.resent += 1
        logger.info(
            "Resending instant sync",
            sync_id=sync_id,
            station_id=pending.target_station_id,
            retry_count=pending.retry_count,
        )
        await self.broadcaster.send(connection, pending.to_message())
        self._arm_timer(sync_id)

    def _arm_timer(self, sync_id: str) -> None:
        previous = self._timers.get(sync_id)
        if previous is not None and previous is not asyncio.current_task() and not previous.done():
            previous.cancel()
        self._timers[sync_id] = asyncio.create_task(self._ack_timer(sync_id), name=f"instant_sync/ack/{sync_id}")

    async def _ack_timer(self, sync_id: str) -> None:
        try:
            await asyncio.sleep(self.config.ack_timeout)
            if self._timers.get(sync_id) is asyncio.current_task():
                del self._timers[sync_id]
            await self.handle_sync_timeout(sync_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Instant sync timer failed", sync_id=sync_id, error=str(e), exc_info=True)

    def _resolve(self, sync_id: str) -> PendingSync | None:
        pending = self._pending.pop(sync_id, None)
        timer = self._timers.pop(sync_id, None)
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        return pending

    def abandon_station(self, station_id: str) -> int:
        """Drop every pending push addressed to a station that went offline."""
        sync_ids = [sync_id for sync_id, pending in self._pending.items() if pending.target_station_id == station_id]
        for sync_id in sync_ids:
            self._resolve(sync_id)
        if sync_ids:
            self.stats.abandoned += len(sync_ids)
            logger.info("Abandoned pending syncs for station", station_id=station_id, count=len(sync_ids))
        return len(sync_ids)

    # Introspection and lifecycle

    def get_pending(self, sync_id: str) -> PendingSync | None:
        return self._pending.get(sync_id)

    def get_pending_syncs_count(self) -> int:
        return len(self._pending)

    def clear_pending_syncs(self) -> int:
        count = len(self._pending)
        for sync_id in list(self._pending):
            self._resolve(sync_id)
        logger.info("Pending syncs cleared", count=count)
        return count

    def get_stats(self) -> dict[str, Any]:
        return {
            "pendingSyncs": len(self._pending),
            "connectedStations": len(self.registry.authenticated_station_ids()),
            "sent": self.stats.sent,
            "resent": self.stats.resent,
            "acknowledged": self.stats.acknowledged,
            "rejected": self.stats.rejected,
            "failed": self.stats.failed,
            "abandoned": self.stats.abandoned,
            "ackTimeout": self.config.ack_timeout,
            "maxRetries": self.config.max_retries,
            "autoResend": self.config.auto_resend,
        }

    async def shutdown(self) -> None:
        """Cancel all ack timers and forget pending pushes."""
        timers = [timer for timer in self._timers.values() if not timer.done()]
        count = self.clear_pending_syncs()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        logger.info("Instant sync service shut down", dropped=count)
