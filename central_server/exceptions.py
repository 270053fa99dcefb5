"""
Exception hierarchy for the Louaj central server.

Every error raised by the station connectivity layer derives from
CentralServerError and carries an ErrorContext describing which session
and station it concerns.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging.
    """

    connection_id: str | None = None
    station_id: str | None = None
    message_type: str | None = None
    request_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "connection_id": self.connection_id,
            "station_id": self.station_id,
            "message_type": self.message_type,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class CentralServerError(Exception):
    """
    Base exception for all central server errors.

    Logged once, with its context, when constructed.
    """

    log_level = "error"

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize central server error.

        Args:
            message: Technical error message
            context: Error context information
            details: Additional error details
            user_friendly: Message safe to send to a station or client
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now(UTC)

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        log_method = getattr(logger, self.log_level, logger.error)
        log_method(
            "Central server error occurred",
            error_type=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class DatabaseError(CentralServerError):
    """Database operation errors."""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        operation: str = "unknown",
        table: str | None = None,
        **kwargs,
    ):
        super().__init__(message, context, **kwargs)
        self.operation = operation
        self.table = table
        self.details["operation"] = operation
        if table:
            self.details["table"] = table


class PresenceStoreError(DatabaseError):
    """A read or write against the station presence store failed."""


class StationAuthenticationError(CentralServerError):
    """A station failed to authenticate its session."""

    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, station_id: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.station_id = station_id
        if station_id:
            self.details["station_id"] = station_id


class StationUnreachableError(CentralServerError):
    """A station's local node could not be reached over HTTP."""

    log_level = "warning"

    def __init__(self, message: str, context: ErrorContext | None = None, station_id: str | None = None, **kwargs):
        super().__init__(message, context, **kwargs)
        self.station_id = station_id
        if station_id:
            self.details["station_id"] = station_id
