"""Persistence layer: store protocols consumed by the core and their SQLAlchemy implementations."""

from .protocols import EntitySnapshotStore, PresenceStore, StationRecord

__all__ = ["EntitySnapshotStore", "PresenceStore", "StationRecord"]
