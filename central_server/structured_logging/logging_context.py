"""
Context management utilities for enhanced logging.

Each station session binds its connection id (and, once authenticated, its
station id) so every log line emitted while handling that session carries them.
"""

import uuid
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


def bind_request_context(
    correlation_id: str | None = None,
    connection_id: str | None = None,
    station_id: str | None = None,
    request_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind request context to the current logging context.

    Args:
        correlation_id: Unique correlation ID for the request
        connection_id: WebSocket connection ID if available
        station_id: Authenticated station ID if available
        request_id: Request ID if available
        **kwargs: Additional context variables
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context_vars = {
        "correlation_id": correlation_id,
        "connection_id": connection_id,
        "station_id": station_id,
        "request_id": request_id,
        **kwargs,
    }

    # Remove None values
    context_vars = {k: v for k, v in context_vars.items() if v is not None}

    bind_contextvars(**context_vars)


def clear_request_context() -> None:
    """Clear the current request context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    try:
        return structlog.contextvars.get_contextvars()
    except (AttributeError, KeyError):
        return {}


def bind_station_context(station_id: str | None) -> None:
    """Attach the authenticated station id to an already bound session context."""
    if station_id is not None:
        bind_contextvars(station_id=station_id)
