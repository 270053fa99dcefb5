"""SQLAlchemy models for the tables the station connectivity layer reads and writes."""

from .base import Base
from .station import Station
from .vehicle import Vehicle, VehicleAuthorizedStation

__all__ = ["Base", "Station", "Vehicle", "VehicleAuthorizedStation"]
