"""
Centralized error types and constants for the Louaj central server.

Keeps error frames sent over station sessions and HTTP error bodies
consistent across the application.
"""

from enum import Enum
from typing import Any

from .realtime.envelope import build_message


class ErrorType(Enum):
    """Standardized error types for consistent categorization."""

    # Authentication
    AUTHENTICATION_FAILED = "authentication_failed"
    NOT_AUTHENTICATED = "not_authenticated"

    # Validation
    INVALID_FORMAT = "invalid_format"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    UNKNOWN_MESSAGE_TYPE = "unknown_message_type"

    # Resources
    RESOURCE_NOT_FOUND = "resource_not_found"

    # Database
    DATABASE_ERROR = "database_error"

    # Network and communication
    STATION_UNREACHABLE = "station_unreachable"
    TIMEOUT_ERROR = "timeout_error"

    # System
    INTERNAL_ERROR = "internal_error"
    MESSAGE_PROCESSING_ERROR = "message_processing_error"


class ErrorMessages:  # pylint: disable=too-few-public-methods
    """Error messages sent back to stations and clients."""

    STATION_ID_REQUIRED = "Station ID is required"
    INVALID_STATION = "Invalid station ID or station inactive"
    NOT_AUTHENTICATED = "Not authenticated"
    INVALID_MESSAGE_FORMAT = "Invalid message format"
    UNKNOWN_MESSAGE_TYPE = "Unknown message type: {message_type}"
    HEARTBEAT_FAILED = "Failed to process heartbeat"
    IP_UPDATE_FAILED = "Failed to update IP address"
    PUBLIC_IP_REQUIRED = "Public IP is required"
    SYNC_FAILED = "Failed to load vehicles for sync"
    INTERNAL_ERROR = "Internal server error"


def create_websocket_error_response(
    error_type: ErrorType,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized WebSocket error frame.

    Args:
        error_type: The type of error
        message: Error message shown to the sender
        details: Additional error details (optional)

    Returns:
        Wire message of type "error"
    """
    return build_message(
        "error",
        {
            "errorType": error_type.value,
            "message": message,
            "details": details or {},
        },
    )


def create_standard_error_response(
    error_type: ErrorType,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized HTTP error body.

    Args:
        error_type: The type of error
        message: Error message
        details: Additional error details (optional)

    Returns:
        Error response dictionary
    """
    return {
        "success": False,
        "error": {
            "type": error_type.value,
            "message": message,
            "details": details or {},
        },
    }
