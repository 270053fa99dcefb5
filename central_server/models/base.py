"""
Shared SQLAlchemy DeclarativeBase for all models.

All models must inherit from this Base so relationships declared by string
name resolve within one registry.
"""

from sqlalchemy.orm import DeclarativeBase

from ..metadata import metadata


class Base(DeclarativeBase):
    """Shared declarative base for all central server models."""

    metadata = metadata
