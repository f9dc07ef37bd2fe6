from datetime import timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Index, JSON, String

from core.database import BaseModel, CHAR_LENGTH
from core.events.schema import Event


class EventRecord(BaseModel):
    """
    Storage form of an Event.

    `partition_key`, `pending_publish` and `published_at` are storage-only:
    they back the outbox (persist, publish, mark published) and never travel
    on the wire.
    """
    __tablename__ = "events"
    __table_args__ = (
        Index('idx_events_pending_source', 'pending_publish', 'source'),
        {'extend_existing': True}
    )

    event_id = Column(String(CHAR_LENGTH), nullable=False, unique=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    source = Column(String(100), nullable=False, index=True)
    topic = Column(String(CHAR_LENGTH), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    snapshot = Column(JSON, nullable=True)

    partition_key = Column(String(CHAR_LENGTH), nullable=True)
    pending_publish = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True), nullable=True)

    @classmethod
    def from_event(cls, event: Event, partition_key: Optional[str] = None,
                   pending_publish: bool = False, published_at=None) -> "EventRecord":
        data = event.to_dict()
        return cls(
            event_id=event.event_id,
            timestamp=event.timestamp,
            source=event.source,
            topic=event.topic,
            payload=data["payload"],
            snapshot=data["snapshot"],
            partition_key=partition_key,
            pending_publish=pending_publish,
            published_at=published_at,
        )

    def to_event(self) -> Event:
        timestamp = self.timestamp
        if timestamp is not None and timestamp.tzinfo is None:
            # SQLite drops the offset; values are always written in UTC
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return Event(
            event_id=self.event_id,
            timestamp=timestamp,
            source=self.source,
            topic=self.topic,
            payload=self.payload,
            snapshot=self.snapshot,
        )

    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses"""
        data = self.to_event().to_dict()
        data["publishedAt"] = self.published_at.isoformat() if self.published_at else None
        data["pendingPublish"] = bool(self.pending_publish)
        return data
