"""
Station model.

A station is a physical taxi/louage depot running its own local node server.
The central server owns only the presence columns (is_online, last_heartbeat,
local_server_ip); everything else is managed by the station administration API.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Station(Base):
    """Station directory row."""

    __tablename__ = "stations"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    name_ar = Column(String(255), nullable=True)
    governorate_id = Column(String(64), nullable=True, index=True)
    delegation_id = Column(String(64), nullable=True, index=True)
    local_server_ip = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_heartbeat = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    authorized_vehicles = relationship("VehicleAuthorizedStation", back_populates="station")

    def __repr__(self) -> str:
        return f"<Station(id={self.id!r}, name={self.name!r}, is_online={self.is_online})>"
