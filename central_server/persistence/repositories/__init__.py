"""SQLAlchemy-backed store implementations."""

from .station_repository import StationRepository
from .vehicle_repository import VehicleRepository

__all__ = ["StationRepository", "VehicleRepository"]
