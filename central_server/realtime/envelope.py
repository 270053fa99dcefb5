"""
Wire envelope utilities for station session messages.

Every frame exchanged with a station node or client app has the shape:
- type: str
- payload: optional object
- timestamp: milliseconds since the Unix epoch
- messageId: optional correlation id
"""

from __future__ import annotations

import time
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WireMessage(BaseModel):
    """Inbound frame as sent by a station node or client app."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] | None = None
    timestamp: int | float | None = None
    message_id: str | None = Field(default=None, alias="messageId")

    @property
    def data(self) -> dict[str, Any]:
        """Payload or an empty dict."""
        return self.payload or {}


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now_z() -> str:
    """Return current UTC time in ISO 8601 format with 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_message_id() -> str:
    return str(uuid.uuid4())


def build_message(
    message_type: str,
    payload: dict[str, Any] | None = None,
    *,
    message_id: str | None = None,
) -> dict[str, Any]:
    """
    Create an outbound wire message.

    Args:
        message_type: Type of message
        payload: Message payload
        message_id: Optional correlation id

    Returns:
        dict: JSON-serializable envelope
    """
    message: dict[str, Any] = {"type": message_type, "payload": payload or {}, "timestamp": now_ms()}
    if message_id is not None:
        message["messageId"] = message_id
    return message


def parse_message(raw: str) -> WireMessage:
    """
    Decode an inbound text frame.

    Raises:
        pydantic.ValidationError: If the frame is not a JSON object with a type
    """
    return WireMessage.model_validate_json(raw)
