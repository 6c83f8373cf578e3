# In src/event_receiver/schemas.py

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# Approximate per-event cost of the timestamp and JSON framing.
EVENT_OVERHEAD_BYTES = 50

# Unix epoch values, which pydantic would otherwise accept as datetimes.
_NUMERIC_TIMESTAMP = re.compile(r"^\s*-?\d+(\.\d+)?\s*$")


# --- Static Type Hinting (for mypy and IDEs) ---


class EventDict(TypedDict):
    """The wire form of a single event, as received and as stored."""

    event_timestamp: str
    body: str


def format_instant(value: datetime) -> str:
    """Render *value* as an ISO-8601 UTC instant with millisecond precision."""
    utc_value = value.astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc_value.microsecond // 1000:03d}Z"


# --- Runtime Validation (using Pydantic) ---


class Event(BaseModel):
    """
    Pydantic model for runtime parsing and validation of an inbound event.

    Instances are immutable. On the wire the timestamp must be an ISO-8601
    string carrying `Z` or an explicit offset; it is always held in UTC.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime = Field(..., alias="event_timestamp")
    body: str = Field(..., min_length=1)

    @field_validator("timestamp", mode="before")
    @classmethod
    def require_iso_string(cls, value: Any) -> Any:
        if not isinstance(value, (str, datetime)) or (
            isinstance(value, str) and _NUMERIC_TIMESTAMP.match(value)
        ):
            raise ValueError("event_timestamp must be an ISO-8601 string")
        return value

    @field_validator("timestamp")
    @classmethod
    def normalize_to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("event_timestamp must end in Z or carry a UTC offset")
        return value.astimezone(timezone.utc)

    @field_validator("body")
    @classmethod
    def reject_blank_body(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("body is required")
        return value

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return format_instant(value)

    def to_wire(self) -> dict[str, Any]:
        """Return the two-field wire form (``event_timestamp``, ``body``)."""
        return self.model_dump(by_alias=True)


def estimate_event_size(event: Event) -> int:
    """Approximate stored size of *event*: body length plus a fixed overhead."""
    return len(event.body) + EVENT_OVERHEAD_BYTES


@dataclass(frozen=True, slots=True)
class Batch:
    """A detached, immutable run of events for one tier, ready for upload."""

    tier: str
    events: tuple[Event, ...]
    size_bytes: int

    def __len__(self) -> int:
        return len(self.events)
