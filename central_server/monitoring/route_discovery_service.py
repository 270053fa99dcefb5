"""
Route discovery: periodic HTTP health monitoring of station local nodes.

Independently of any WebSocket session, every tracked station's local node
is probed on a fixed cadence. A station only flips offline after
``max_consecutive_failures`` failed probes in a row, and flips back online on
the first successful probe. Each transition is written to the presence store
and published on the PresenceEventBus.
"""

# pylint: disable=too-many-instance-attributes

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from ..config.models import MonitoringConfig
from ..exceptions import CentralServerError, ErrorContext, StationUnreachableError
from ..persistence.protocols import PresenceStore, StationRecord
from ..structured_logging.enhanced_logging_config import get_logger
from .presence_events import PresenceEvent, PresenceEventBus, PresenceEventType

logger = get_logger(__name__)


@dataclass
class StationConnection:
    """Cached reachability state for one station."""

    station_id: str
    station_name: str
    local_server_ip: str
    is_online: bool = False
    last_checked: datetime | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    response_time_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "stationId": self.station_id,
            "stationName": self.station_name,
            "localServerIp": self.local_server_ip,
            "isOnline": self.is_online,
            "lastChecked": self.last_checked.isoformat() if self.last_checked else None,
            "consecutiveFailures": self.consecutive_failures,
            "lastError": self.last_error,
            "responseTimeMs": self.response_time_ms,
        }


def build_node_base_url(local_server_ip: str, port: int) -> str:
    """
    Base URL of a station's local node.

    Accepts a bare host, host:port, or a full http(s) URL.
    """
    address = local_server_ip.strip().rstrip("/")
    if address.startswith(("http://", "https://")):
        return address
    if ":" in address and not address.startswith("["):
        return f"http://{address}"
    return f"http://{address}:{port}"


class RouteDiscoveryService:
    """
    Health monitor for station local nodes.

    The tracked-station set is seeded from the presence store on start and
    re-seeded at the beginning of every tick, so stations added or
    re-addressed later are picked up without a restart.
    """

    def __init__(
        self,
        presence_store: PresenceStore,
        config: MonitoringConfig,
        event_bus: PresenceEventBus,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        has_live_session: Callable[[str], bool] | None = None,
    ) -> None:
        """
        Initialize the route discovery service.

        Args:
            presence_store: Station directory used for seeding and write-through
            config: Monitoring intervals and thresholds
            event_bus: Bus on which station_online / station_offline are published
            transport: Optional httpx transport (tests pass httpx.MockTransport)
            has_live_session: Returns True while a station has an authenticated
                WebSocket session; such stations are not marked offline by probes
        """
        self._store = presence_store
        self._config = config
        self._event_bus = event_bus
        self._transport = transport
        self._has_live_session = has_live_session or (lambda _station_id: False)

        self._stations: dict[str, StationConnection] = {}
        self._client: httpx.AsyncClient | None = None
        self._monitor_task: asyncio.Task | None = None
        self._initialized = False
        self.last_check_at: datetime | None = None
        self.checks_completed = 0

    # Lifecycle

    async def initialize(self) -> None:
        """Seed the tracked-station set from the presence store."""
        await self.reseed()
        self._initialized = True
        logger.info("Route discovery initialized", tracked_stations=len(self._stations))

    async def start(self) -> None:
        """Seed the tracked set and start the monitor task, which probes immediately."""
        if self._monitor_task is not None and not self._monitor_task.done():
            logger.warning("Route discovery monitor already running")
            return
        await self.initialize()
        self._monitor_task = asyncio.create_task(self._monitor_loop(), name="route_discovery/monitor")
        logger.info(
            "Route discovery monitoring started",
            interval_seconds=self._config.monitoring_interval,
            max_consecutive_failures=self._config.max_consecutive_failures,
        )

    async def stop(self) -> None:
        """Cancel the monitor task and close the HTTP client."""
        if self._monitor_task is not None and not self._monitor_task.done():
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        self._monitor_task = None

        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Route discovery monitoring stopped")

    @property
    def is_running(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self) -> None:
        try:
            await self.check_all_stations()
            while True:
                await asyncio.sleep(self._config.monitoring_interval)
                await self.reseed()
                await self.check_all_stations()
        except asyncio.CancelledError:
            logger.info("Route discovery monitor task cancelled")
            raise

    # Tracked-station set

    async def reseed(self) -> None:
        """
        Merge the store's active stations with a known IP into the tracked set.

        New stations are added with the store's online flag, changed names/IPs
        are applied, and stations no longer listed are dropped. Store failures
        keep the current set.
        """
        try:
            records = await self._store.list_monitorable_stations()
        except CentralServerError as e:
            logger.error("Failed to load stations for monitoring", error=str(e))
            return

        seen: set[str] = set()
        for record in records:
            seen.add(record.id)
            self._merge_record(record)

        for station_id in list(self._stations):
            if station_id not in seen:
                del self._stations[station_id]
                logger.info("Station no longer monitored", station_id=station_id)

    def _merge_record(self, record: StationRecord) -> None:
        if not record.local_server_ip:
            return
        station = self._stations.get(record.id)
        if station is None:
            self._stations[record.id] = StationConnection(
                station_id=record.id,
                station_name=record.name,
                local_server_ip=record.local_server_ip,
                is_online=record.is_online,
            )
            logger.debug("Station added to monitoring", station_id=record.id, local_server_ip=record.local_server_ip)
            return
        station.station_name = record.name
        if station.local_server_ip != record.local_server_ip:
            logger.info(
                "Station address changed",
                station_id=record.id,
                old_ip=station.local_server_ip,
                new_ip=record.local_server_ip,
            )
            station.local_server_ip = record.local_server_ip
            station.consecutive_failures = 0

    def register_station(self, station_id: str, station_name: str, local_server_ip: str) -> StationConnection:
        """Explicitly start tracking a station (or update its address)."""
        self._merge_record(
            StationRecord(
                id=station_id,
                name=station_name,
                is_active=True,
                is_online=False,
                local_server_ip=local_server_ip,
            )
        )
        return self._stations[station_id]

    def observe_presence(
        self,
        station_id: str,
        is_online: bool,
        *,
        local_server_ip: str | None = None,
        station_name: str | None = None,
    ) -> None:
        """
        Align the cache with a session-driven presence change.

        Keeps the next probe's transition logic in step with what the session
        layer already wrote to the store.
        """
        station = self._stations.get(station_id)
        if station is None:
            if local_server_ip and station_name:
                station = self.register_station(station_id, station_name, local_server_ip)
            else:
                return
        elif local_server_ip and local_server_ip != station.local_server_ip:
            station.local_server_ip = local_server_ip
        station.is_online = is_online
        if is_online:
            station.consecutive_failures = 0

    # Probing

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.probe_timeout,
                transport=self._transport,
                headers={"User-Agent": self._config.user_agent, "Accept": "application/json"},
            )
        return self._client

    async def check_all_stations(self) -> None:
        """Probe every tracked station concurrently."""
        stations = list(self._stations.values())
        if stations:
            await asyncio.gather(*(self.check_station_health(station) for station in stations))
        self.last_check_at = datetime.now(UTC)
        self.checks_completed += 1
        logger.debug(
            "Station health round complete",
            tracked=len(stations),
            online=sum(1 for station in stations if station.is_online),
        )

    async def check_station_health(self, station: StationConnection) -> bool:
        """
        Probe one station and apply the hysteresis rules.

        Never raises: every failure is recorded as a failed probe.

        Returns:
            bool: True if the probe succeeded
        """
        url = build_node_base_url(station.local_server_ip, self._config.node_port) + self._config.health_path
        started = time.perf_counter()
        try:
            # httpx timeouts apply per phase; the outer deadline bounds the whole request
            async with asyncio.timeout(self._config.probe_timeout):
                response = await self._get_client().get(url, timeout=self._config.probe_timeout)
            healthy, reason = self._evaluate_response(response)
        except (httpx.TimeoutException, TimeoutError):
            healthy, reason = False, "timeout"
        except httpx.HTTPError as e:
            healthy, reason = False, f"{type(e).__name__}: {e}"
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Unexpected error probing station", station_id=station.station_id, error=str(e))
            healthy, reason = False, f"{type(e).__name__}: {e}"

        station.last_checked = datetime.now(UTC)
        if healthy:
            station.response_time_ms = round((time.perf_counter() - started) * 1000, 1)
            await self._record_success(station)
        else:
            await self._record_failure(station, reason or "unhealthy")
        return healthy

    @staticmethod
    def _evaluate_response(response: httpx.Response) -> tuple[bool, str | None]:
        if not response.is_success:
            return False, f"HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            return False, "malformed body"
        if not isinstance(body, dict) or body.get("success") is not True:
            return False, "health endpoint reported failure"
        return True, None

    async def _record_success(self, station: StationConnection) -> None:
        station.consecutive_failures = 0
        station.last_error = None
        if station.is_online:
            return

        station.is_online = True
        logger.info("Station came online", station_id=station.station_id, station_name=station.station_name)
        await self._write_presence(station, True)
        await self._event_bus.publish(
            PresenceEvent(
                event_type=PresenceEventType.STATION_ONLINE,
                station_id=station.station_id,
                station_name=station.station_name,
                local_server_ip=station.local_server_ip,
            )
        )

    async def _record_failure(self, station: StationConnection, reason: str) -> None:
        station.consecutive_failures += 1
        station.last_error = reason
        logger.debug(
            "Station health probe failed",
            station_id=station.station_id,
            consecutive_failures=station.consecutive_failures,
            reason=reason,
        )

        if not station.is_online or station.consecutive_failures < self._config.max_consecutive_failures:
            return

        if self._has_live_session(station.station_id):
            logger.warning(
                "Health probes failing but station session is alive; keeping station online",
                station_id=station.station_id,
                consecutive_failures=station.consecutive_failures,
            )
            return

        station.is_online = False
        logger.warning(
            "Station went offline",
            station_id=station.station_id,
            station_name=station.station_name,
            consecutive_failures=station.consecutive_failures,
            reason=reason,
        )
        await self._write_presence(station, False)
        await self._event_bus.publish(
            PresenceEvent(
                event_type=PresenceEventType.STATION_OFFLINE,
                station_id=station.station_id,
                station_name=station.station_name,
                local_server_ip=station.local_server_ip,
            )
        )

    async def _write_presence(self, station: StationConnection, is_online: bool) -> None:
        try:
            await self._store.set_presence(station.station_id, is_online, datetime.now(UTC))
        except CentralServerError as e:
            # The cached state still advances; the next transition or heartbeat rewrites the store
            logger.error(
                "Failed to write probe-driven presence",
                station_id=station.station_id,
                is_online=is_online,
                error=str(e),
            )

    # Queries

    def get_station_availability(self) -> list[StationConnection]:
        """Snapshot of every tracked station."""
        return list(self._stations.values())

    def get_online_stations(self) -> list[StationConnection]:
        return [station for station in self._stations.values() if station.is_online]

    def get_station(self, station_id: str) -> StationConnection | None:
        return self._stations.get(station_id)

    def is_station_online(self, station_id: str) -> bool:
        station = self._stations.get(station_id)
        return station is not None and station.is_online

    async def refresh_station(self, station_id: str) -> StationConnection | None:
        """Probe one station now instead of waiting for the next tick."""
        station = self._stations.get(station_id)
        if station is None:
            return None
        await self.check_station_health(station)
        return station

    async def get_cached_route_data(self, station_id: str, destination_id: str) -> dict[str, Any]:
        """
        Fetch live queue data for a destination from an online station.

        Raises:
            StationUnreachableError: If the station is unknown, offline, or the request fails
        """
        station = self._stations.get(station_id)
        context = ErrorContext(station_id=station_id, metadata={"destination_id": destination_id})
        if station is None or not station.is_online:
            raise StationUnreachableError("Station not available", context=context, station_id=station_id)

        url = f"{build_node_base_url(station.local_server_ip, self._config.node_port)}/api/public/queue/{destination_id}"
        try:
            response = await self._get_client().get(url, timeout=self._config.route_data_timeout)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise StationUnreachableError(
                f"Failed to fetch route data: {e}", context=context, station_id=station_id
            ) from e

        return {
            "stationId": station_id,
            "destinationId": destination_id,
            "data": data,
            "fetchedAt": datetime.now(UTC).isoformat(),
            "fromCache": False,
        }

    def get_stats(self) -> dict[str, Any]:
        stations = list(self._stations.values())
        online = sum(1 for station in stations if station.is_online)
        return {
            "totalStations": len(stations),
            "onlineStations": online,
            "offlineStations": len(stations) - online,
            "lastCheckAt": self.last_check_at.isoformat() if self.last_check_at else None,
            "checksCompleted": self.checks_completed,
            "monitoringInterval": self._config.monitoring_interval,
            "maxConsecutiveFailures": self._config.max_consecutive_failures,
            "isRunning": self.is_running,
        }
