"""
Tests for the in-process presence event bus.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from ....monitoring.presence_events import PresenceEvent, PresenceEventBus, PresenceEventType


def _event(event_type=PresenceEventType.STATION_ONLINE, station_id="st-1"):
    return PresenceEvent(event_type=event_type, station_id=station_id, station_name="Tunis", local_server_ip="10.0.0.1")


class TestPresenceEvent:
    """Test the event value object."""

    def test_is_online(self):
        assert _event().is_online
        assert not _event(PresenceEventType.STATION_OFFLINE).is_online

    def test_to_dict(self):
        data = _event().to_dict()
        assert data["stationId"] == "st-1"
        assert data["source"] == "health_check"


class TestPresenceEventBus:
    """Test subscribe / publish semantics."""

    @pytest.mark.asyncio
    async def test_publish_reaches_only_matching_subscribers(self):
        bus = PresenceEventBus()
        online = Mock()
        offline = AsyncMock()
        bus.subscribe(PresenceEventType.STATION_ONLINE, online)
        bus.subscribe(PresenceEventType.STATION_OFFLINE, offline)

        event = _event()
        await bus.publish(event)

        online.assert_called_once_with(event)
        offline.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self):
        bus = PresenceEventBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe(PresenceEventType.STATION_ONLINE, broken)
        bus.subscribe(PresenceEventType.STATION_ONLINE, healthy)

        await bus.publish(_event())

        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sync_subscriber_error_is_contained(self):
        bus = PresenceEventBus()
        bus.subscribe(PresenceEventType.STATION_ONLINE, Mock(side_effect=ValueError("bad")))
        after = Mock()
        bus.subscribe(PresenceEventType.STATION_ONLINE, after)

        await bus.publish(_event())

        after.assert_called_once()

    def test_unsubscribe(self):
        bus = PresenceEventBus()
        callback = Mock()
        bus.subscribe(PresenceEventType.STATION_OFFLINE, callback)

        assert bus.unsubscribe(PresenceEventType.STATION_OFFLINE, callback) is True
        assert bus.unsubscribe(PresenceEventType.STATION_OFFLINE, callback) is False
        assert bus.subscriber_count(PresenceEventType.STATION_OFFLINE) == 0

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        await PresenceEventBus().publish(_event(PresenceEventType.STATION_OFFLINE))
