"""
Tests for the central server exception hierarchy.
"""

from ...exceptions import (
    CentralServerError,
    DatabaseError,
    ErrorContext,
    PresenceStoreError,
    StationAuthenticationError,
    StationUnreachableError,
)


class TestCentralServerError:
    """Test base error behavior."""

    def test_defaults(self):
        error = CentralServerError("boom")

        assert error.message == "boom"
        assert error.user_friendly == "boom"
        assert error.details == {}
        assert error.context.station_id is None

    def test_to_dict(self):
        error = CentralServerError("boom", ErrorContext(station_id="st-1"), user_friendly="Try again")

        body = error.to_dict()

        assert body["error_type"] == "CentralServerError"
        assert body["user_friendly"] == "Try again"
        assert "timestamp" in body

    def test_context_to_dict(self):
        context = ErrorContext(connection_id="conn-1", station_id="st-1", metadata={"attempt": 2})

        data = context.to_dict()

        assert data["connection_id"] == "conn-1"
        assert data["metadata"] == {"attempt": 2}


class TestSubclasses:
    """Test the details each subclass records."""

    def test_presence_store_error_is_database_error(self):
        error = PresenceStoreError("write failed", operation="set_presence", table="stations")

        assert isinstance(error, DatabaseError)
        assert error.details == {"operation": "set_presence", "table": "stations"}

    def test_station_errors_record_station_id(self):
        auth = StationAuthenticationError("rejected", station_id="st-9")
        unreachable = StationUnreachableError("down", station_id="st-9")

        assert auth.details["station_id"] == "st-9"
        assert unreachable.station_id == "st-9"
        assert auth.log_level == unreachable.log_level == "warning"
