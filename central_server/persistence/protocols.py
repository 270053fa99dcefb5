"""
Store protocols for the station connectivity layer.

The presence store (station directory) and entity snapshots are owned by
the wider application; the core depends only on these protocols so tests
can substitute in-memory fakes.
"""

# pylint: disable=unnecessary-ellipsis

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class StationRecord:
    """Presence-relevant view of a station row."""

    id: str
    name: str
    is_active: bool
    is_online: bool
    last_heartbeat: datetime | None = None
    local_server_ip: str | None = None


class PresenceStore(Protocol):
    """
    Read/write contract for the station directory.

    Implemented by central_server.persistence.repositories.station_repository.StationRepository.
    Write failures raise PresenceStoreError.
    """

    async def get_station(self, station_id: str) -> StationRecord | None:
        """Get a station by id (active or not)."""
        ...

    async def list_stations(self) -> list[StationRecord]:
        """List every station."""
        ...

    async def list_monitorable_stations(self) -> list[StationRecord]:
        """Active stations with a known local server IP."""
        ...

    async def set_presence(
        self,
        station_id: str,
        is_online: bool,
        at: datetime,
        local_server_ip: str | None = None,
    ) -> None:
        """Write is_online and last_heartbeat, and the IP when given."""
        ...

    async def set_presence_many(self, station_ids: list[str], is_online: bool, at: datetime) -> int:
        """Write presence for several stations in one statement; returns rows updated."""
        ...

    async def update_local_server_ip(self, station_id: str, local_server_ip: str, at: datetime) -> None:
        """Record a new public IP for the station's local node."""
        ...

    async def ping(self) -> bool:
        """Return True when the store is reachable."""
        ...


class EntitySnapshotStore(Protocol):
    """
    Read contract for entity snapshots pushed to station nodes.

    Implemented by central_server.persistence.repositories.vehicle_repository.VehicleRepository.
    """

    async def get_station_vehicles(self, station_id: str) -> list[dict[str, Any]]:
        """Active vehicles authorized for a station, in sync shape."""
        ...

    async def get_vehicle(self, vehicle_id: str) -> dict[str, Any] | None:
        """A single vehicle in sync shape, including authorizedStationIds."""
        ...
