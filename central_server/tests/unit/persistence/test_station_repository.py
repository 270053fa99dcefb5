"""
Tests for StationRepository.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from ....exceptions import PresenceStoreError
from ....persistence.repositories import StationRepository


@pytest.fixture
def repository(session_maker) -> StationRepository:
    return StationRepository(session_maker)


class TestStationReads:
    """Test station lookups."""

    @pytest.mark.asyncio
    async def test_get_station(self, repository):
        station = await repository.get_station("st-1")

        assert station.name == "Tunis Central"
        assert station.is_active is True
        assert station.is_online is False
        assert station.local_server_ip == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_get_unknown_station(self, repository):
        assert await repository.get_station("st-missing") is None

    @pytest.mark.asyncio
    async def test_list_stations_ordered_by_name(self, repository):
        names = [station.name for station in await repository.list_stations()]
        assert names == ["Sfax", "Sousse", "Tunis Central"]

    @pytest.mark.asyncio
    async def test_monitorable_stations_need_active_and_ip(self, repository):
        stations = await repository.list_monitorable_stations()
        assert [station.id for station in stations] == ["st-1"]

    @pytest.mark.asyncio
    async def test_ping(self, repository):
        assert await repository.ping() is True


class TestPresenceWrites:
    """Test presence and IP writes."""

    @pytest.mark.asyncio
    async def test_set_presence_with_ip(self, repository):
        at = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)

        await repository.set_presence("st-2", True, at, local_server_ip="41.226.10.2")

        station = await repository.get_station("st-2")
        assert station.is_online is True
        assert station.local_server_ip == "41.226.10.2"
        assert station.last_heartbeat is not None

    @pytest.mark.asyncio
    async def test_set_presence_keeps_ip_when_not_given(self, repository):
        await repository.set_presence("st-1", True, datetime.now(UTC))

        station = await repository.get_station("st-1")
        assert station.local_server_ip == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_set_presence_unknown_station_is_not_an_error(self, repository):
        await repository.set_presence("st-missing", True, datetime.now(UTC))

    @pytest.mark.asyncio
    async def test_set_presence_many(self, repository):
        await repository.set_presence("st-1", True, datetime.now(UTC))
        await repository.set_presence("st-2", True, datetime.now(UTC))

        updated = await repository.set_presence_many(["st-1", "st-2", "st-missing"], False, datetime.now(UTC))

        assert updated == 2
        assert not any(station.is_online for station in await repository.list_stations())

    @pytest.mark.asyncio
    async def test_set_presence_many_empty(self, repository):
        assert await repository.set_presence_many([], False, datetime.now(UTC)) == 0

    @pytest.mark.asyncio
    async def test_update_local_server_ip(self, repository):
        await repository.update_local_server_ip("st-1", "41.226.10.9", datetime.now(UTC))

        station = await repository.get_station("st-1")
        assert station.local_server_ip == "41.226.10.9"

    @pytest.mark.asyncio
    async def test_update_local_server_ip_unknown_station(self, repository):
        with pytest.raises(PresenceStoreError) as exc_info:
            await repository.update_local_server_ip("st-missing", "41.226.10.9", datetime.now(UTC))
        assert exc_info.value.operation == "update_local_server_ip"


class TestStoreFailures:
    """Test that SQLAlchemy errors surface as PresenceStoreError."""

    @pytest.fixture
    def broken_repository(self) -> StationRepository:
        def failing_session():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        return StationRepository(MagicMock(side_effect=failing_session))

    @pytest.mark.asyncio
    async def test_read_failure(self, broken_repository):
        with pytest.raises(PresenceStoreError) as exc_info:
            await broken_repository.get_station("st-1")
        assert exc_info.value.context.station_id == "st-1"

    @pytest.mark.asyncio
    async def test_write_failure(self, broken_repository):
        with pytest.raises(PresenceStoreError):
            await broken_repository.set_presence("st-1", True, datetime.now(UTC))

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, broken_repository):
        assert await broken_repository.ping() is False
