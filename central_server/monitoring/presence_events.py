"""
Presence-change events published by the health monitor.

Consumers register explicitly with PresenceEventBus.subscribe so the
dependency between the monitor and whoever reacts to it stays visible.
"""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class PresenceEventType(str, Enum):
    STATION_ONLINE = "station_online"
    STATION_OFFLINE = "station_offline"


@dataclass(frozen=True)
class PresenceEvent:
    """A station changed reachability state."""

    event_type: PresenceEventType
    station_id: str
    station_name: str
    local_server_ip: str | None = None
    source: str = "health_check"
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_online(self) -> bool:
        return self.event_type is PresenceEventType.STATION_ONLINE

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event_type.value,
            "stationId": self.station_id,
            "stationName": self.station_name,
            "localServerIp": self.local_server_ip,
            "source": self.source,
            "occurredAt": self.occurred_at.isoformat(),
        }


PresenceCallback = Callable[[PresenceEvent], Any]


class PresenceEventBus:
    """
    In-process pub/sub for presence events.

    publish() awaits every subscriber before returning; a failing subscriber
    is logged and does not prevent the others from running.
    """

    def __init__(self) -> None:
        self._subscribers: dict[PresenceEventType, list[PresenceCallback]] = defaultdict(list)

    def subscribe(self, event_type: PresenceEventType, callback: PresenceCallback) -> None:
        """
        Register a callback for one event type.

        Args:
            event_type: station_online or station_offline
            callback: Sync or async callable receiving the PresenceEvent
        """
        if not callable(callback):
            raise ValueError("Callback must be callable")
        self._subscribers[event_type].append(callback)
        logger.debug(
            "Presence subscriber added",
            event_type=event_type.value,
            subscriber=getattr(callback, "__qualname__", repr(callback)),
        )

    def unsubscribe(self, event_type: PresenceEventType, callback: PresenceCallback) -> bool:
        """Remove a callback. Returns False if it was not subscribed."""
        try:
            self._subscribers[event_type].remove(callback)
            return True
        except ValueError:
            return False

    def subscriber_count(self, event_type: PresenceEventType) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: PresenceEvent) -> None:
        subscribers = list(self._subscribers.get(event.event_type, []))
        logger.info(
            "Publishing presence event",
            event_type=event.event_type.value,
            station_id=event.station_id,
            subscriber_count=len(subscribers),
        )

        awaitables = []
        for callback in subscribers:
            try:
                result = callback(event)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error(
                    "Presence subscriber failed",
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    event_type=event.event_type.value,
                    error=str(e),
                )
                continue
            if inspect.isawaitable(result):
                awaitables.append((callback, result))

        if not awaitables:
            return

        results = await asyncio.gather(*(awaitable for _, awaitable in awaitables), return_exceptions=True)
        for (callback, _), result in zip(awaitables, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Presence subscriber failed",
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    event_type=event.event_type.value,
                    error=str(result),
                )
