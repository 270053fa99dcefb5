"""
Tests for the central WebSocket server: session loop, liveness sweep,
presence-event fan-out and shutdown.
"""

import json
import time

import pytest
from ....monitoring.presence_events import PresenceEvent, PresenceEventType
from ....realtime.connection_models import ConnectionClass
from ....realtime.session_protocol import SessionProtocolHandler
from ....realtime.websocket_server import CentralWebSocketServer
from ....sync.instant_sync_service import InstantSyncService
from ...fakes import bytes_frame, disconnect_frame, last_message, make_mock_websocket, sent_types, text_frame


@pytest.fixture
def server(registry, broadcaster, presence_store, snapshot_store, sync_config, realtime_config, event_bus):
    sync_service = InstantSyncService(registry, broadcaster, snapshot_store, sync_config)
    protocol = SessionProtocolHandler(registry, broadcaster, presence_store, sync_service)
    return CentralWebSocketServer(registry, broadcaster, protocol, presence_store, realtime_config, event_bus=event_bus)


def _frame(message_type, payload=None):
    return text_frame(json.dumps({"type": message_type, "payload": payload or {}, "timestamp": 0}))


class TestHandleConnection:
    """Test the per-connection receive loop."""

    @pytest.mark.asyncio
    async def test_session_lifecycle(self, server, registry, presence_store):
        websocket = make_mock_websocket()
        websocket.receive.side_effect = [
            _frame("authenticate", {"stationId": "st-1"}),
            _frame("heartbeat"),
            disconnect_frame(1001),
        ]

        await server.handle_connection(websocket)

        websocket.accept.assert_awaited_once()
        assert sent_types(websocket)[:3] == ["connected", "authenticated", "vehicle_sync_full"]
        assert "heartbeat_ack" in sent_types(websocket)
        connected = last_message(websocket, "connected")["payload"]
        assert connected["message"] == "Connected to Louaj Central Server"
        assert registry.count() == 0
        assert presence_store.presence_writes[0] == ("st-1", True)
        assert presence_store.presence_writes[-1] == ("st-1", False)

    @pytest.mark.asyncio
    async def test_unexpected_error_still_cleans_up(self, server, registry, presence_store):
        websocket = make_mock_websocket()
        websocket.receive.side_effect = [
            _frame("authenticate", {"stationId": "st-2"}),
            ValueError("socket exploded"),
        ]

        await server.handle_connection(websocket)

        assert registry.count() == 0
        assert presence_store.presence_writes[-1] == ("st-2", False)

    @pytest.mark.asyncio
    async def test_binary_frames_are_decoded(self, server, presence_store):
        websocket = make_mock_websocket()
        heartbeat = json.dumps({"type": "heartbeat", "payload": {}, "timestamp": 0}).encode("utf-8")
        websocket.receive.side_effect = [
            _frame("authenticate", {"stationId": "st-1"}),
            bytes_frame(heartbeat),
            _frame("heartbeat"),
            disconnect_frame(1000),
        ]

        await server.handle_connection(websocket)

        assert sent_types(websocket).count("heartbeat_ack") == 2
        assert presence_store.presence_writes == [("st-1", True), ("st-1", True), ("st-1", True), ("st-1", False)]

    @pytest.mark.asyncio
    async def test_undecodable_binary_frame_keeps_session_open(self, server, registry):
        websocket = make_mock_websocket()
        websocket.receive.side_effect = [
            _frame("authenticate", {"stationId": "st-1"}),
            bytes_frame(b"\xff\xfe\x00"),
            _frame("heartbeat"),
            disconnect_frame(1000),
        ]

        await server.handle_connection(websocket)

        error = last_message(websocket, "error")["payload"]
        assert error["errorType"] == "invalid_format"
        assert sent_types(websocket)[-1] == "heartbeat_ack"
        assert registry.count() == 0


class TestLivenessSweep:
    """Test idle-session expiry and liveness pings."""

    @pytest.mark.asyncio
    async def test_idle_station_is_closed_and_marked_offline(self, server, connect, registry, presence_store):
        watcher = connect(connection_class=ConnectionClass.MOBILE_APP)
        idle = connect("st-1")
        now = time.time()
        idle.last_heartbeat = now - 61

        result = await server.sweep_connections(now)

        assert result["timedOut"] == 1
        assert registry.get(idle.connection_id) is None
        assert idle.session.is_closed
        idle.websocket.close.assert_awaited_once_with(code=1000, reason="Connection timeout")
        assert presence_store.presence_writes == [("st-1", False)]
        update = last_message(watcher.websocket, "station_status_update")["payload"]
        assert update["reason"] == "timeout"
        assert update["isOnline"] is False

    @pytest.mark.asyncio
    async def test_fresh_connection_is_pinged_not_closed(self, server, connect, registry, presence_store):
        fresh = connect("st-1")
        now = time.time()
        fresh.last_heartbeat = now - 59

        result = await server.sweep_connections(now)

        assert result == {"timedOut": 0, "pinged": 1}
        assert registry.get(fresh.connection_id) is fresh
        fresh.websocket.close.assert_not_awaited()
        assert sent_types(fresh.websocket) == ["ping"]
        assert presence_store.presence_writes == []

    @pytest.mark.asyncio
    async def test_idle_unauthenticated_session_closed_without_presence_write(self, server, connect, presence_store):
        pending = connect()
        now = time.time()
        pending.last_heartbeat = now - 120

        await server.sweep_connections(now)

        pending.websocket.close.assert_awaited_once()
        assert presence_store.presence_writes == []

    @pytest.mark.asyncio
    async def test_sweep_after_disconnect_is_a_noop(self, server, connect, presence_store):
        connection = connect("st-1")
        await server.protocol.handle_disconnection(connection.connection_id, 1000, None)
        writes = list(presence_store.presence_writes)

        await server.sweep_connections(time.time() + 3600)

        assert presence_store.presence_writes == writes
        connection.websocket.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, server):
        server.start()
        assert server.get_stats()["sweepRunning"] is True
        await server.stop()
        assert server.get_stats()["sweepRunning"] is False


class TestPresenceEvents:
    """Test fan-out of health-monitor presence events."""

    @pytest.mark.asyncio
    async def test_station_offline_event_is_broadcast(self, server, connect, event_bus):
        watcher = connect(connection_class=ConnectionClass.DESKTOP_APP, station_id="st-2")

        await event_bus.publish(
            PresenceEvent(
                event_type=PresenceEventType.STATION_OFFLINE,
                station_id="st-1",
                station_name="Tunis Central",
                local_server_ip="192.168.1.10",
            )
        )

        update = last_message(watcher.websocket, "station_status_update")["payload"]
        assert update["stationId"] == "st-1"
        assert update["isOnline"] is False
        assert update["reason"] == "health_check"


class TestStatusAndShutdown:
    """Test status queries and graceful close."""

    @pytest.mark.asyncio
    async def test_station_status_includes_live_sessions(self, server, connect):
        connect("st-1")

        status = {row["stationId"]: row for row in await server.get_station_status()}

        assert status["st-1"]["connectionCount"] == 1
        assert status["st-1"]["heartbeatAgeSeconds"] is not None
        assert status["st-2"]["connectionCount"] == 0
        assert status["st-2"]["heartbeatAgeSeconds"] is None

    @pytest.mark.asyncio
    async def test_client_queries(self, server, connect):
        connect("st-1")
        connect()

        assert server.get_client_count() == 2
        assert server.get_authenticated_stations() == ["st-1"]
        assert {client["authenticated"] for client in server.get_connected_clients()} == {True, False}

    @pytest.mark.asyncio
    async def test_broadcast_to_class_accepts_wire_name(self, server, connect):
        mobile = connect(connection_class=ConnectionClass.MOBILE_APP)

        assert await server.broadcast_to_class("mobile-app", {"type": "notice"}) == 1
        assert sent_types(mobile.websocket) == ["notice"]

    @pytest.mark.asyncio
    async def test_close_marks_stations_offline_and_closes_sockets(self, server, connect, registry, presence_store, event_bus):
        first = connect("st-1")
        second = connect("st-2")
        pending = connect()

        await server.close()
        await server.close()

        assert sorted(presence_store.presence_writes) == [("st-1", False), ("st-2", False)]
        for connection in (first, second, pending):
            connection.websocket.close.assert_awaited_once_with(code=1001, reason="Server shutdown")
        assert registry.count() == 0
        assert event_bus.subscriber_count(PresenceEventType.STATION_OFFLINE) == 0

    @pytest.mark.asyncio
    async def test_close_survives_store_failure(self, server, connect, registry, presence_store):
        connect("st-1")
        presence_store.fail_writes = True

        await server.close()

        assert registry.count() == 0


def test_server_subscribes_to_presence_events(server, event_bus):
    assert event_bus.subscriber_count(PresenceEventType.STATION_ONLINE) == 1
    assert event_bus.subscriber_count(PresenceEventType.STATION_OFFLINE) == 1
