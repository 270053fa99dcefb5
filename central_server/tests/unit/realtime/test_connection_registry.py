"""
Tests for the in-memory connection registry.
"""

from ....realtime.connection_models import Connection, ConnectionClass
from ....realtime.connection_registry import ConnectionRegistry
from ...fakes import make_mock_websocket


def _register(registry: ConnectionRegistry, connection_id: str) -> Connection:
    connection = Connection(connection_id=connection_id, websocket=make_mock_websocket())
    registry.register(connection)
    return connection


class TestRegistration:
    """Test register / unregister."""

    def test_register_is_unauthenticated(self, registry):
        connection = _register(registry, "c1")
        assert registry.get("c1") is connection
        assert not connection.authenticated
        assert registry.count() == 1
        assert registry.authenticated_count() == 0

    def test_unregister_is_idempotent(self, registry):
        _register(registry, "c1")
        assert registry.unregister("c1") is not None
        assert registry.unregister("c1") is None
        assert registry.unregister("never-seen") is None
        assert registry.count() == 0

    def test_unregister_keeps_session_state_for_caller(self, registry):
        connection = _register(registry, "c1")
        registry.promote("c1", "st-1", "Tunis")
        removed = registry.unregister("c1")
        assert removed is connection
        assert removed.authenticated
        assert registry.find_by_station("st-1") is None


class TestPromotion:
    """Test authentication promotion and station indexing."""

    def test_promote_indexes_station_node(self, registry):
        _register(registry, "c1")
        connection, evicted = registry.promote("c1", "st-1", "Tunis")
        assert evicted == []
        assert connection.authenticated
        assert registry.find_by_station("st-1") is connection
        assert registry.is_station_connected("st-1")
        assert registry.authenticated_station_ids() == ["st-1"]

    def test_promote_unknown_connection(self, registry):
        assert registry.promote("ghost", "st-1") == (None, [])

    def test_second_station_node_evicts_first(self, registry):
        first = _register(registry, "c1")
        second = _register(registry, "c2")
        registry.promote("c1", "st-1")
        _, evicted = registry.promote("c2", "st-1")

        assert evicted == [first]
        assert registry.get("c1") is None
        assert registry.find_by_station("st-1") is second
        assert registry.count() == 1

    def test_desktop_app_does_not_evict_station_node(self, registry):
        node = _register(registry, "c1")
        _register(registry, "c2")
        registry.promote("c1", "st-1")
        _, evicted = registry.promote("c2", "st-1", connection_class=ConnectionClass.DESKTOP_APP)

        assert evicted == []
        assert registry.find_by_station("st-1") is node
        assert registry.authenticated_count() == 2

    def test_reauthenticate_as_other_station_moves_index(self, registry):
        _register(registry, "c1")
        registry.promote("c1", "st-1")
        registry.promote("c1", "st-2")
        assert registry.find_by_station("st-1") is None
        assert registry.find_by_station("st-2").connection_id == "c1"

    def test_all_authenticated_filters_by_class(self, registry):
        _register(registry, "c1")
        _register(registry, "c2")
        _register(registry, "c3")
        registry.promote("c1", "st-1")
        registry.promote("c2", None, connection_class=ConnectionClass.MOBILE_APP)

        mobile = registry.all_authenticated(ConnectionClass.MOBILE_APP)
        assert [connection.connection_id for connection in mobile] == ["c2"]
        assert len(registry.all_authenticated()) == 2

    def test_stats_and_clear(self, registry):
        _register(registry, "c1")
        _register(registry, "c2")
        registry.promote("c1", "st-1")

        stats = registry.stats()
        assert stats["totalConnections"] == 2
        assert stats["authenticatedConnections"] == 1
        assert stats["connectedStations"] == 1
        assert stats["byType"]["local-node"] == 1

        removed = registry.clear()
        assert len(removed) == 2
        assert registry.count() == 0
        assert registry.authenticated_station_ids() == []
