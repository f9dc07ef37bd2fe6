"""
Canonical event schema exchanged over the message channel.

The storage record (models.event.EventRecord) is a separate layer; only this
shape travels on the wire.
"""
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import EventDecodeError

EVENT_ID_PREFIX = "evt_"

# Namespace for ids derived from a consumed event (idempotent relays)
DERIVED_EVENT_NAMESPACE = uuid.UUID("6f1c1f0e-3d5b-4c55-9a0c-5d1c2b7e8a41")


def new_event_id() -> str:
    return f"{EVENT_ID_PREFIX}{uuid.uuid4()}"


def derived_event_id(source: str, role: str, consumed_event_id: str) -> str:
    """Deterministic id: the same (source, role, consumed id) always yields the same eventId."""
    name = f"{source}:{role}:{consumed_event_id}"
    return f"{EVENT_ID_PREFIX}{uuid.uuid5(DERIVED_EVENT_NAMESPACE, name)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    """
    Immutable event record: payload is the cause, snapshot the resulting state.

    Only `eventId` and `payload` are required to decode an inbound message;
    events built here always carry timestamp, source and topic.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: str = Field(..., alias="eventId", min_length=1)
    timestamp: Optional[datetime] = None
    source: Optional[str] = Field(None, min_length=1)
    topic: Optional[str] = Field(None, min_length=1)
    payload: Any
    snapshot: Optional[Dict[str, Any]] = None

    @classmethod
    def create(
        cls,
        source: str,
        topic: str,
        payload: Any,
        snapshot: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> "Event":
        """Build a fresh event stamped with the current UTC time."""
        return cls(
            event_id=event_id or new_event_id(),
            timestamp=utcnow(),
            source=source,
            topic=topic,
            payload=payload,
            snapshot=snapshot,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict with wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True)

    def to_wire(self) -> bytes:
        """Canonical JSON bytes of the full event."""
        return encode_value(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise EventDecodeError(f"Message is not a valid event: {e}") from e

    @classmethod
    def from_wire(cls, value: Optional[bytes]) -> "Event":
        if value is None:
            raise EventDecodeError("Message has no value")
        try:
            data = json.loads(value.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EventDecodeError(f"Message value is not UTF-8 JSON: {e}") from e
        if not isinstance(data, dict):
            raise EventDecodeError("Message value is not a JSON object")
        return cls.from_dict(data)

    def snapshot_value(self, name: str) -> Any:
        return (self.snapshot or {}).get(name)

    def payload_value(self, name: str) -> Any:
        if isinstance(self.payload, dict):
            return self.payload.get(name)
        return None


def encode_value(value: Any) -> bytes:
    """Canonical JSON form: sorted keys, compact separators, UTF-8."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    ).encode("utf-8")
