"""
Vehicle repository providing entity snapshots for station sync.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...exceptions import DatabaseError, ErrorContext
from ...models.vehicle import Vehicle, VehicleAuthorizedStation
from ...structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class VehicleRepository:
    """Implements the EntitySnapshotStore protocol for vehicles."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get_station_vehicles(self, station_id: str) -> list[dict[str, Any]]:
        try:
            async with self._session_maker() as session:
                stmt = (
                    select(Vehicle)
                    .join(VehicleAuthorizedStation, VehicleAuthorizedStation.vehicle_id == Vehicle.id)
                    .where(VehicleAuthorizedStation.station_id == station_id, Vehicle.is_active.is_(True))
                    .order_by(Vehicle.license_plate)
                )
                result = await session.execute(stmt)
                vehicles = [vehicle.to_sync_dict() for vehicle in result.scalars().unique().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to load vehicles for station: {e}",
                context=ErrorContext(station_id=station_id),
                operation="get_station_vehicles",
                table="vehicles",
            ) from e
        logger.debug("Loaded station vehicles", station_id=station_id, count=len(vehicles))
        return vehicles

    async def get_vehicle(self, vehicle_id: str) -> dict[str, Any] | None:
        try:
            async with self._session_maker() as session:
                vehicle = await session.get(Vehicle, vehicle_id)
                return vehicle.to_sync_dict() if vehicle is not None else None
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to load vehicle: {e}",
                context=ErrorContext(metadata={"vehicle_id": vehicle_id}),
                operation="get_vehicle",
                table="vehicles",
            ) from e
