"""
Tests for ApplicationContainer wiring and lifecycle.
"""

import asyncio

import httpx
import pytest

from ...config.models import AppConfig, MonitoringConfig
from ...container import ApplicationContainer
from ...monitoring.presence_events import PresenceEvent, PresenceEventType
from ...realtime.connection_models import Connection, ConnectionClass
from ...sync.instant_sync_service import SyncEntityType, SyncOperation
from ..fakes import make_mock_websocket


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _build(presence_store, snapshot_store, monitoring_enabled: bool = False) -> ApplicationContainer:
    return ApplicationContainer(
        AppConfig(monitoring=MonitoringConfig(enabled=monitoring_enabled)),
        presence_store=presence_store,
        snapshot_store=snapshot_store,
        probe_transport=httpx.MockTransport(_unreachable),
    )


class TestContainerLifecycle:
    """Test initialization, start and shutdown."""

    @pytest.mark.asyncio
    async def test_initialize_builds_services(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store)

        await container.initialize()

        assert container.is_initialized
        assert container.database_manager is None
        assert container.websocket_server.registry is container.registry
        assert container.sync_service is not None
        assert container.route_discovery is not None

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store)

        await container.initialize()
        registry = container.registry
        await container.initialize()

        assert container.registry is registry

    @pytest.mark.asyncio
    async def test_start_without_monitoring_only_seeds(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store)

        await container.start()
        try:
            assert container.get_status() == {"initialized": True, "started": True, "monitoringEnabled": False}
            assert not container.route_discovery.is_running
            assert len(container.route_discovery.get_station_availability()) == 2
            assert container.websocket_server.get_stats()["sweepRunning"]
        finally:
            await container.shutdown()

    @pytest.mark.asyncio
    async def test_start_with_monitoring_runs_monitor(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store, monitoring_enabled=True)

        await container.start()
        try:
            assert container.route_discovery.is_running
            async with asyncio.timeout(2):
                while container.route_discovery.get_stats()["checksCompleted"] < 1:
                    await asyncio.sleep(0.01)
        finally:
            await container.shutdown()

        assert not container.route_discovery.is_running
        assert not container.websocket_server.get_stats()["sweepRunning"]


class TestContainerWiring:
    """Test cross-service behavior set up by the container."""

    @pytest.mark.asyncio
    async def test_monitor_offline_event_abandons_pending_syncs(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store)
        await container.initialize()
        connection = Connection(connection_id="conn-1", websocket=make_mock_websocket())
        container.registry.register(connection)
        container.registry.promote("conn-1", "st-1", "Tunis Central", ConnectionClass.STATION_NODE)

        sync_ids = await container.sync_service.sync_entity(
            SyncEntityType.STAFF, SyncOperation.CREATE, {"id": "s-1"}, station_id="st-1"
        )
        assert container.sync_service.get_pending_syncs_count() == 1

        await container.event_bus.publish(
            PresenceEvent(event_type=PresenceEventType.STATION_OFFLINE, station_id="st-1", station_name="Tunis Central")
        )

        assert len(sync_ids) == 1
        assert container.sync_service.get_pending_syncs_count() == 0
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_marks_live_stations_offline(self, presence_store, snapshot_store):
        container = _build(presence_store, snapshot_store)
        await container.start()
        websocket = make_mock_websocket()
        container.registry.register(Connection(connection_id="conn-1", websocket=websocket))
        container.registry.promote("conn-1", "st-2", "Sousse", ConnectionClass.STATION_NODE)

        await container.shutdown()

        assert ("st-2", False) in presence_store.presence_writes
        websocket.close.assert_awaited_once_with(code=1001, reason="Server shutdown")
