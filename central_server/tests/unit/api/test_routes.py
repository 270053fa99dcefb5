"""
Tests for the HTTP and WebSocket routes, running the full container on fake stores.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from ....app.factory import create_app
from ....config.models import AppConfig, MonitoringConfig
from ....container import ApplicationContainer


def _probe(request: httpx.Request) -> httpx.Response:
    if request.url.host == "192.168.1.20":
        if request.url.path.startswith("/api/public/queue/"):
            return httpx.Response(200, json={"queue": [], "destination": request.url.path.rsplit("/", 1)[-1]})
        return httpx.Response(200, json={"success": True})
    raise httpx.ConnectError("connection refused", request=request)


@pytest.fixture
def container(presence_store, snapshot_store) -> ApplicationContainer:
    return ApplicationContainer(
        AppConfig(monitoring=MonitoringConfig(enabled=False)),
        presence_store=presence_store,
        snapshot_store=snapshot_store,
        probe_transport=httpx.MockTransport(_probe),
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client


def _authenticate(ws, station_id: str = "st-1", **extra) -> dict:
    assert ws.receive_json()["type"] == "connected"
    ws.send_json({"type": "authenticate", "payload": {"stationId": station_id, **extra}})
    return ws.receive_json()


class TestHealthEndpoints:
    """Test service health and socket status."""

    def test_health_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["websocket"] == {"clients": 0, "authenticatedStations": 0}
        assert body["monitoring"] == {"running": False}

    def test_health_degraded_when_store_unreachable(self, client, presence_store):
        presence_store.reachable = False

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_socket_status(self, client):
        response = client.get("/api/v1/socket/status")

        data = response.json()["data"]
        assert data["connectedStations"] == []
        assert data["clients"] == []
        assert data["connectionTimeout"] == 60.0


class TestRouteDiscoveryEndpoints:
    """Test station reachability endpoints."""

    def test_list_stations(self, client):
        body = client.get("/api/v1/route-discovery/stations").json()

        assert body["count"] == 2
        assert {station["stationId"] for station in body["data"]} == {"st-1", "st-2"}

    def test_unknown_station_status_is_404(self, client):
        response = client.get("/api/v1/route-discovery/station/st-404/status")

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "resource_not_found"

    def test_refresh_then_queue(self, client):
        refreshed = client.post("/api/v1/route-discovery/station/st-2/refresh").json()
        assert refreshed["data"]["isOnline"] is True

        online = client.get("/api/v1/route-discovery/stations/online").json()
        assert [station["stationId"] for station in online["data"]] == ["st-2"]

        queue = client.get("/api/v1/route-discovery/station/st-2/queue/dest-4").json()
        assert queue["data"]["data"]["destination"] == "dest-4"

    def test_queue_from_offline_station_is_503(self, client):
        response = client.get("/api/v1/route-discovery/station/st-1/queue/dest-4")

        assert response.status_code == 503
        assert response.json()["error"]["type"] == "station_unreachable"

    def test_monitoring_health(self, client):
        data = client.get("/api/v1/route-discovery/health").json()["data"]

        assert data["totalStations"] == 2
        assert data["isRunning"] is False


class TestWebSocketSession:
    """Test a station session end to end."""

    def test_station_authenticates_and_receives_full_sync(self, client, presence_store):
        with client.websocket_connect("/ws") as ws:
            authenticated = _authenticate(ws, publicIp="41.226.10.2")

            assert authenticated["type"] == "authenticated"
            assert authenticated["payload"]["stationName"] == "Tunis Central"

            full_sync = ws.receive_json()
            assert full_sync["type"] == "vehicle_sync_full"
            assert full_sync["payload"]["count"] == 2

        assert ("st-1", True) in presence_store.presence_writes

    def test_heartbeat_ack(self, client):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws)
            ws.receive_json()

            ws.send_json({"type": "heartbeat", "payload": {"timestamp": 1700000000000}})
            ack = ws.receive_json()

        assert ack["type"] == "heartbeat_ack"
        assert ack["payload"]["clientTime"] == 1700000000000
        assert ack["payload"]["stationId"] == "st-1"

    def test_invalid_station_is_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            reply = _authenticate(ws, station_id="st-3")

        assert reply["type"] == "auth_error"

    def test_malformed_frame_gets_error(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("not json")
            reply = ws.receive_json()

        assert reply["type"] == "error"
        assert reply["payload"]["errorType"] == "invalid_format"

    def test_socket_status_lists_connected_station(self, client):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws)
            ws.receive_json()

            data = client.get("/api/v1/socket/status").json()["data"]

        assert data["connectedStations"] == ["st-1"]


class TestSyncEndpoints:
    """Test manual entity pushes."""

    def test_push_to_connected_station(self, client):
        with client.websocket_connect("/ws") as ws:
            _authenticate(ws)
            ws.receive_json()

            response = client.post(
                "/api/v1/sync/staff",
                json={"operation": "create", "data": {"id": "s-1", "firstName": "Amal"}, "stationId": "st-1"},
            )
            pushed = ws.receive_json()

            body = response.json()
            assert body["data"]["delivered"] == 1
            assert pushed["type"] == "instant_sync"
            assert pushed["payload"]["syncId"] == body["data"]["syncIds"][0]
            assert pushed["payload"]["entityType"] == "staff"

            status = client.get("/api/v1/sync/status").json()["data"]
            assert status["pendingSyncs"] == 1

    def test_push_to_disconnected_station_delivers_nothing(self, client):
        response = client.post("/api/v1/sync/route", json={"operation": "update", "data": {}, "stationId": "st-2"})

        assert response.status_code == 200
        assert response.json()["data"] == {"syncIds": [], "delivered": 0}

    def test_unknown_entity_type_is_400(self, client):
        response = client.post("/api/v1/sync/spaceship", json={"operation": "create", "data": {}})

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_format"
