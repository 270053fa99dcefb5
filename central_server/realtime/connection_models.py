"""
Data models for station session tracking.
"""

# pylint: disable=too-many-instance-attributes

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi import WebSocket

from .session_state_machine import SessionStateMachine


class ConnectionClass(str, Enum):
    """Kind of peer on the other end of a session, as named on the wire."""

    STATION_NODE = "local-node"
    DESKTOP_APP = "desktop-app"
    MOBILE_APP = "mobile-app"

    @classmethod
    def from_wire(cls, value: Any) -> "ConnectionClass | None":
        """Resolve a wire value, or None when it is not recognised."""
        if value is None:
            return None
        try:
            return cls(str(value))
        except ValueError:
            return None


@dataclass
class Connection:
    """
    A live transport session.

    Created unauthenticated when the transport connects, promoted when the
    peer authenticates, and discarded on close, timeout or server shutdown.
    """

    connection_id: str
    websocket: WebSocket
    remote_address: str | None = None
    connection_class: ConnectionClass = ConnectionClass.STATION_NODE
    station_id: str | None = None
    station_name: str | None = None
    connected_at: float = field(default_factory=time.time)
    last_heartbeat: float = field(default_factory=time.time)
    session: SessionStateMachine = field(init=False)

    def __post_init__(self) -> None:
        self.session = SessionStateMachine(self.connection_id)

    @property
    def authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def is_station_node(self) -> bool:
        return self.connection_class is ConnectionClass.STATION_NODE

    def close_session(self) -> None:
        """Move the session to its terminal state; no-op when already closed."""
        if not self.session.is_closed:
            self.session.close()

    def mark_seen(self, now: float | None = None) -> None:
        """Refresh the last-activity timestamp."""
        self.last_heartbeat = now if now is not None else time.time()

    def heartbeat_age(self, now: float | None = None) -> float:
        """Seconds since the last inbound activity."""
        return (now if now is not None else time.time()) - self.last_heartbeat

    def to_dict(self) -> dict[str, Any]:
        """Summary used by status endpoints."""
        return {
            "clientId": self.connection_id,
            "stationId": self.station_id,
            "stationName": self.station_name,
            "connectionType": self.connection_class.value,
            "authenticated": self.authenticated,
            "remoteAddress": self.remote_address,
            "connectedAt": int(self.connected_at * 1000),
            "lastHeartbeat": int(self.last_heartbeat * 1000),
        }
