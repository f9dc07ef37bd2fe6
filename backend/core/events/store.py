"""
Append-only event store on top of an injected SQLAlchemy session factory.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.event import EventRecord
from .errors import DuplicateEventError, PersistError
from .schema import Event, utcnow

logger = logging.getLogger(__name__)

STORE_ERRORS = (SQLAlchemyError, OSError)

# Snapshot fields that point at the causing event, in lookup order
LINEAGE_FIELDS = ("originalEventId", "processedEventId")


@dataclass(frozen=True)
class StoreWrite:
    """One record to append, with its storage-only outbox flags."""
    event: Event
    partition_key: Optional[str] = None
    pending_publish: bool = False
    published: bool = False


class EventStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def append(self, event: Event, partition_key: Optional[str] = None,
                     pending_publish: bool = False, published: bool = False) -> EventRecord:
        """
        Insert one immutable event.

        Raises:
            DuplicateEventError: the eventId is already stored.
            PersistError: any other store failure.
        """
        record = EventRecord.from_event(
            event,
            partition_key=partition_key,
            pending_publish=pending_publish,
            published_at=utcnow() if published else None,
        )
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except IntegrityError as e:
            if await self.exists(event.event_id):
                raise DuplicateEventError(f"Event {event.event_id} already stored", event.event_id) from e
            raise PersistError(f"Event {event.event_id} rejected by the store: {e}", event.event_id) from e
        except STORE_ERRORS as e:
            logger.error(f"Failed to save event {event.event_id}: {e}")
            raise PersistError(f"Failed to save event {event.event_id}: {e}", event.event_id) from e
        logger.debug(f"Event {event.event_id} saved to the event store.")
        return record

    async def append_all(self, writes: Sequence[StoreWrite],
                         ignore_duplicates: bool = False) -> List[Optional[EventRecord]]:
        """
        Append independent records concurrently, each on its own session.

        All writes run to completion; the first error is raised afterwards.
        With `ignore_duplicates`, an already-stored event yields None instead.
        """
        results = await asyncio.gather(
            *(self.append(w.event, w.partition_key, w.pending_publish, w.published) for w in writes),
            return_exceptions=True,
        )
        records: List[Optional[EventRecord]] = []
        first_error = None
        for result in results:
            if isinstance(result, DuplicateEventError) and ignore_duplicates:
                records.append(None)
            elif isinstance(result, BaseException):
                first_error = first_error or result
                records.append(None)
            else:
                records.append(result)
        if first_error is not None:
            raise first_error
        return records

    async def get_record(self, event_id: str) -> Optional[EventRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(EventRecord).where(EventRecord.event_id == event_id))
                return result.scalar_one_or_none()
        except STORE_ERRORS as e:
            raise PersistError(f"Failed to read event {event_id}: {e}", event_id) from e

    async def get(self, event_id: str) -> Optional[Event]:
        record = await self.get_record(event_id)
        return record.to_event() if record else None

    async def exists(self, event_id: str) -> bool:
        return await self.get_record(event_id) is not None

    async def is_published(self, event_id: str) -> bool:
        record = await self.get_record(event_id)
        return bool(record and record.is_published)

    async def mark_published(self, event_id: str) -> bool:
        """Clear the pending marker. Returns False if nothing was pending."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(EventRecord)
                    .where(EventRecord.event_id == event_id, EventRecord.published_at.is_(None))
                    .values(published_at=utcnow(), pending_publish=False)
                )
                await session.commit()
                return result.rowcount > 0
        except STORE_ERRORS as e:
            raise PersistError(f"Failed to mark event {event_id} as published: {e}", event_id) from e

    async def list_unpublished(self, source: Optional[str] = None, limit: int = 100) -> List[EventRecord]:
        """Records persisted for publishing whose publish was never confirmed, oldest first."""
        query = select(EventRecord).where(EventRecord.pending_publish.is_(True))
        if source:
            query = query.where(EventRecord.source == source)
        query = query.order_by(EventRecord.timestamp, EventRecord.id).limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except STORE_ERRORS as e:
            raise PersistError(f"Failed to list unpublished events: {e}") from e

    async def list_by_topic(self, topic: str, limit: int = 100) -> List[Event]:
        query = (
            select(EventRecord)
            .where(EventRecord.topic == topic)
            .order_by(EventRecord.timestamp, EventRecord.id)
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [record.to_event() for record in result.scalars().all()]
        except STORE_ERRORS as e:
            raise PersistError(f"Failed to list events for topic {topic}: {e}") from e

    async def lineage(self, event_id: str, max_depth: int = 50) -> List[Event]:
        """
        Follow snapshot links from an event back to the root of its causal chain.

        The first element is the requested event. Links are not enforced
        referentially, so the walk stops at a missing event or a cycle.
        """
        chain: List[Event] = []
        seen = set()
        current = await self.get(event_id)
        while current is not None and len(chain) < max_depth:
            chain.append(current)
            seen.add(current.event_id)
            parent_id = next(
                (current.snapshot_value(name) for name in LINEAGE_FIELDS if current.snapshot_value(name)),
                None,
            )
            if not parent_id or parent_id in seen:
                break
            current = await self.get(parent_id)
        return chain

    async def delete_by_source(self, source: str) -> int:
        """Administrative cleanup (seeding, test teardown)."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(EventRecord).where(EventRecord.source == source))
                await session.commit()
                logger.info(f"Deleted {result.rowcount} events from source {source}.")
                return result.rowcount
        except STORE_ERRORS as e:
            raise PersistError(f"Failed to delete events from source {source}: {e}") from e
