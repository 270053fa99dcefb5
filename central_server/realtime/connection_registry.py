"""
In-memory registry of live station and client sessions.

The registry answers "which session is the authenticated station node for
station X" and "how many sessions / stations are live". It never touches the
presence store; callers translate registry changes into store writes.

All mutation happens on the event loop thread between suspension points, so
no locking is needed.
"""

from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger
from .connection_models import Connection, ConnectionClass

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Track all live transport sessions.

    At most one authenticated station-node session exists per station id:
    promoting a new one evicts any previous session for that station.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        # station_id -> connection_id of its authenticated station-node session
        self._station_index: dict[str, str] = {}

    def register(self, connection: Connection) -> None:
        """Add a new, unauthenticated connection."""
        self._connections[connection.connection_id] = connection
        logger.debug(
            "Connection registered",
            connection_id=connection.connection_id,
            remote_address=connection.remote_address,
            total_connections=len(self._connections),
        )

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def promote(
        self,
        connection_id: str,
        station_id: str | None,
        station_name: str | None = None,
        connection_class: ConnectionClass | None = None,
    ) -> tuple[Connection | None, list[Connection]]:
        """
        Mark a connection authenticated and tag it with a station identity.

        Re-authentication of an already authenticated connection is treated as
        a fresh promotion and overwrites the previous identity.

        Args:
            connection_id: The connection to promote
            station_id: Station identity (None for mobile apps)
            station_name: Display name for the station
            connection_class: Class to assign, keeping the current one if None

        Returns:
            tuple: (promoted connection or None if unknown, evicted connections).
            Evicted connections are already removed from the registry; the
            caller is responsible for closing their transports.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.warning("Cannot promote unknown connection", connection_id=connection_id, station_id=station_id)
            return None, []

        self._drop_station_index(connection)

        if connection_class is not None:
            connection.connection_class = connection_class
        connection.station_id = station_id
        connection.station_name = station_name
        connection.session.authenticate()
        connection.mark_seen()

        evicted: list[Connection] = []
        if station_id is not None and connection.is_station_node:
            previous_id = self._station_index.get(station_id)
            if previous_id is not None and previous_id != connection_id:
                previous = self._remove(previous_id)
                if previous is not None:
                    evicted.append(previous)
                    logger.warning(
                        "Evicting previous session for station",
                        station_id=station_id,
                        evicted_connection_id=previous_id,
                        connection_id=connection_id,
                    )
            self._station_index[station_id] = connection_id

        logger.info(
            "Connection promoted",
            connection_id=connection_id,
            station_id=station_id,
            connection_type=connection.connection_class.value,
            authentications=connection.session.authentication_count,
        )
        return connection, evicted

    def unregister(self, connection_id: str) -> Connection | None:
        """
        Remove a connection.

        Idempotent: unregistering an absent id returns None.

        Returns:
            The removed connection, with its state as it was before removal
        """
        connection = self._remove(connection_id)
        if connection is not None:
            logger.debug(
                "Connection unregistered",
                connection_id=connection_id,
                station_id=connection.station_id,
                total_connections=len(self._connections),
            )
        return connection

    def find_by_station(self, station_id: str) -> Connection | None:
        """Return the authenticated station-node connection for a station, if any."""
        connection_id = self._station_index.get(station_id)
        if connection_id is None:
            return None
        connection = self._connections.get(connection_id)
        if connection is None or not connection.authenticated:
            return None
        return connection

    def all_authenticated(self, connection_class: ConnectionClass | None = None) -> list[Connection]:
        """All authenticated connections, optionally filtered by class."""
        return [
            connection
            for connection in self._connections.values()
            if connection.authenticated and (connection_class is None or connection.connection_class is connection_class)
        ]

    def all_connections(self) -> list[Connection]:
        return list(self._connections.values())

    def authenticated_station_ids(self) -> list[str]:
        return list(self._station_index.keys())

    def is_station_connected(self, station_id: str) -> bool:
        return self.find_by_station(station_id) is not None

    def count(self) -> int:
        return len(self._connections)

    def authenticated_count(self) -> int:
        return len(self.all_authenticated())

    def clear(self) -> list[Connection]:
        """Remove every connection, returning what was removed."""
        removed = list(self._connections.values())
        self._connections.clear()
        self._station_index.clear()
        return removed

    def stats(self) -> dict[str, Any]:
        by_class: dict[str, int] = {cls.value: 0 for cls in ConnectionClass}
        for connection in self.all_authenticated():
            by_class[connection.connection_class.value] += 1
        return {
            "totalConnections": self.count(),
            "authenticatedConnections": self.authenticated_count(),
            "connectedStations": len(self._station_index),
            "byType": by_class,
        }

    def _remove(self, connection_id: str) -> Connection | None:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        self._drop_station_index(connection)
        return connection

    def _drop_station_index(self, connection: Connection) -> None:
        station_id = connection.station_id
        if station_id is not None and self._station_index.get(station_id) == connection.connection_id:
            del self._station_index[station_id]
