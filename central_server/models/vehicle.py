"""
Vehicle models.

Vehicles are pushed to the station nodes they are authorized to operate from.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Vehicle(Base):
    """A vehicle registered with the network."""

    __tablename__ = "vehicles"

    id = Column(String(64), primary_key=True)
    license_plate = Column(String(32), nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=8)
    model = Column(String(128), nullable=True)
    year = Column(Integer, nullable=True)
    color = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    authorized_stations = relationship(
        "VehicleAuthorizedStation", back_populates="vehicle", cascade="all, delete-orphan", lazy="selectin"
    )

    def to_sync_dict(self) -> dict:
        """Shape pushed to station nodes."""
        return {
            "id": self.id,
            "licensePlate": self.license_plate,
            "capacity": self.capacity,
            "model": self.model,
            "year": self.year,
            "color": self.color,
            "isActive": self.is_active,
            "isAvailable": self.is_available,
            "authorizedStationIds": [link.station_id for link in self.authorized_stations],
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class VehicleAuthorizedStation(Base):
    """Link between a vehicle and a station it may operate from."""

    __tablename__ = "vehicle_authorized_stations"
    __table_args__ = (UniqueConstraint("vehicle_id", "station_id", name="uq_vehicle_authorized_station"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(String(64), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    station_id = Column(String(64), ForeignKey("stations.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    vehicle = relationship("Vehicle", back_populates="authorized_stations")
    station = relationship("Station", back_populates="authorized_vehicles")
