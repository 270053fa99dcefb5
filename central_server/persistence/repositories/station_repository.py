"""
Station repository for async presence operations.

Implements the PresenceStore protocol on top of the ``stations`` table.
"""

from datetime import datetime

from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...exceptions import ErrorContext, PresenceStoreError
from ...models.station import Station
from ...structured_logging.enhanced_logging_config import get_logger
from ..protocols import StationRecord

logger = get_logger(__name__)


def _to_record(station: Station) -> StationRecord:
    return StationRecord(
        id=station.id,
        name=station.name,
        is_active=bool(station.is_active),
        is_online=bool(station.is_online),
        last_heartbeat=station.last_heartbeat,
        local_server_ip=station.local_server_ip,
    )


class StationRepository:
    """
    Repository for station presence persistence.

    Every SQLAlchemy failure is wrapped in PresenceStoreError.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        """
        Initialize the station repository.

        Args:
            session_maker: Async session factory
        """
        self._session_maker = session_maker

    async def get_station(self, station_id: str) -> StationRecord | None:
        try:
            async with self._session_maker() as session:
                station = await session.get(Station, station_id)
                return _to_record(station) if station is not None else None
        except SQLAlchemyError as e:
            raise self._error("get_station", e, station_id) from e

    async def list_stations(self) -> list[StationRecord]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(select(Station).order_by(Station.name))
                return [_to_record(station) for station in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._error("list_stations", e) from e

    async def list_monitorable_stations(self) -> list[StationRecord]:
        try:
            async with self._session_maker() as session:
                stmt = select(Station).where(
                    Station.is_active.is_(True),
                    Station.local_server_ip.is_not(None),
                    Station.local_server_ip != "",
                )
                result = await session.execute(stmt)
                return [_to_record(station) for station in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._error("list_monitorable_stations", e) from e

    async def set_presence(
        self,
        station_id: str,
        is_online: bool,
        at: datetime,
        local_server_ip: str | None = None,
    ) -> None:
        values: dict = {"is_online": is_online, "last_heartbeat": at, "updated_at": at}
        if local_server_ip:
            values["local_server_ip"] = local_server_ip
        try:
            async with self._session_maker() as session:
                result = await session.execute(update(Station).where(Station.id == station_id).values(**values))
                await session.commit()
        except SQLAlchemyError as e:
            raise self._error("set_presence", e, station_id) from e

        if result.rowcount == 0:
            logger.warning("Presence update matched no station", station_id=station_id, is_online=is_online)
        else:
            logger.debug("Station presence updated", station_id=station_id, is_online=is_online)

    async def set_presence_many(self, station_ids: list[str], is_online: bool, at: datetime) -> int:
        if not station_ids:
            return 0
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    update(Station)
                    .where(Station.id.in_(station_ids))
                    .values(is_online=is_online, last_heartbeat=at, updated_at=at)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._error("set_presence_many", e, metadata={"station_count": len(station_ids)}) from e
        logger.info("Bulk presence update", station_count=len(station_ids), updated=result.rowcount, is_online=is_online)
        return int(result.rowcount or 0)

    async def update_local_server_ip(self, station_id: str, local_server_ip: str, at: datetime) -> None:
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    update(Station)
                    .where(Station.id == station_id)
                    .values(local_server_ip=local_server_ip, last_heartbeat=at, updated_at=at)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._error("update_local_server_ip", e, station_id) from e
        if result.rowcount == 0:
            raise PresenceStoreError(
                "Station not found for IP update",
                context=ErrorContext(station_id=station_id),
                operation="update_local_server_ip",
                table="stations",
            )

    async def ping(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Presence store ping failed", error=str(e))
            return False

    @staticmethod
    def _error(
        operation: str,
        error: Exception,
        station_id: str | None = None,
        metadata: dict | None = None,
    ) -> PresenceStoreError:
        context = ErrorContext(station_id=station_id, metadata=metadata or {})
        return PresenceStoreError(
            f"Presence store {operation} failed: {error}",
            context=context,
            operation=operation,
            table="stations",
            details={"error_type": type(error).__name__},
        )
