"""
Relay handlers: consume one event, derive an outbound event plus a
processing-log event, then publish and persist them.

In idempotent mode (default) the relay follows an outbox sequence: both
records are persisted with the outbound marked pending, the outbound is
published, then marked published. Derived ids are deterministic, so a
redelivered event resumes where the previous attempt stopped and never
yields a second outbound event. In non-idempotent mode every delivery
derives fresh ids and publishes before persisting.

Publish and persist failures are returned as FAILED results so the consumer
retry policy decides what happens to the offset.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from core.config import settings
from .consumer import HandlerResult
from .errors import EventSystemError, EventValidationError, PersistError, PublishError
from .producer import EventProducer
from .schema import Event, derived_event_id, new_event_id
from .store import EventStore, StoreWrite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outbound:
    """Domain content of the event a relay emits downstream"""
    payload: Dict[str, Any]
    snapshot: Dict[str, Any]


async def republish_pending(store: EventStore, producer: EventProducer,
                            source: Optional[str] = None, limit: int = 100) -> int:
    """Publish stored events still marked pending and clear their marker."""
    published = 0
    for record in await store.list_unpublished(source=source, limit=limit):
        try:
            await producer.publish(record.topic, record.partition_key, record.to_event())
            await store.mark_published(record.event_id)
        except (PublishError, PersistError) as e:
            # Left pending for the next pass
            logger.error(f"Failed to republish pending event {record.event_id}: {e}")
            continue
        published += 1
    if published:
        logger.info(f"Republished {published} pending events{f' from {source}' if source else ''}.")
    return published


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


class RelayHandler(ABC):
    """
    Base class for consume-transform-produce-persist relays.

    Subclasses declare the required fields and implement `transform`;
    `deliver` is an optional side effect run before anything is persisted.
    """

    name: str = ""
    source: str = ""
    required_payload_fields: Tuple[str, ...] = ()
    required_snapshot_fields: Tuple[str, ...] = ()
    processed_status: str = "PROCESSED"

    def __init__(
        self,
        producer: EventProducer,
        store: EventStore,
        consume_topic: Optional[str] = None,
        produce_topic: Optional[str] = None,
        idempotent: Optional[bool] = None,
    ):
        self.producer = producer
        self.store = store
        self.consume_topic = consume_topic or self.default_consume_topic()
        self.produce_topic = produce_topic or self.default_produce_topic()
        self.idempotent = settings.RELAY_IDEMPOTENT if idempotent is None else idempotent

    @classmethod
    @abstractmethod
    def default_consume_topic(cls) -> str:
        ...

    @classmethod
    @abstractmethod
    def default_produce_topic(cls) -> str:
        ...

    @abstractmethod
    def transform(self, event: Event) -> Outbound:
        """Build the outbound payload/snapshot from a validated event."""

    def partition_key(self, outbound_event: Event) -> Optional[str]:
        return None

    async def deliver(self, event: Event, outbound: Outbound):
        return None

    async def __call__(self, event: Event) -> HandlerResult:
        return await self.handle(event)

    def validate(self, event: Event):
        # Required fields must be non-empty strings; they become keys and message text
        missing = [
            f"payload.{name}" for name in self.required_payload_fields
            if not _is_text(event.payload_value(name))
        ]
        missing += [
            f"snapshot.{name}" for name in self.required_snapshot_fields
            if not _is_text(event.snapshot_value(name))
        ]
        if missing:
            raise EventValidationError(
                f"Missing required fields {', '.join(missing)} in eventId: {event.event_id}",
                missing=missing,
            )

    def build_events(self, consumed: Event, outbound: Outbound) -> Tuple[Event, Event]:
        """Outbound event linked to the consumed one, and the processing-log event."""
        if self.idempotent:
            outbound_id = derived_event_id(self.source, "outbound", consumed.event_id)
            log_id = derived_event_id(self.source, "log", consumed.event_id)
        else:
            outbound_id, log_id = new_event_id(), new_event_id()

        outbound_event = Event.create(
            source=self.source,
            topic=self.produce_topic,
            payload=outbound.payload,
            snapshot={**outbound.snapshot, "originalEventId": consumed.event_id},
            event_id=outbound_id,
        )
        log_event = Event.create(
            source=self.source,
            topic=self.consume_topic,
            payload=consumed.to_dict(),
            snapshot={
                "status": self.processed_status,
                "downstreamEventId": outbound_id,
                "processedEventId": consumed.event_id,
            },
            event_id=log_id,
        )
        return outbound_event, log_event

    async def handle(self, event: Event) -> HandlerResult:
        logger.info(f"{self.source}: Processing eventId: {event.event_id} from topic {self.consume_topic}")
        try:
            self.validate(event)
        except EventValidationError as e:
            logger.error(f"{self.source}: {e}. Skipping.")
            return HandlerResult.dropped(str(e))

        outbound = self.transform(event)
        outbound_event, log_event = self.build_events(event, outbound)
        try:
            if self.idempotent:
                return await self._relay_with_outbox(event, outbound, outbound_event, log_event)
            return await self._relay_direct(event, outbound, outbound_event, log_event)
        except EventSystemError as e:
            logger.error(
                f"{self.source}: Error during processing or sending downstream event "
                f"for original eventId {event.event_id}: {e}",
                exc_info=True,
            )
            return HandlerResult.failed(e)

    async def _relay_with_outbox(self, event: Event, outbound: Outbound,
                                 outbound_event: Event, log_event: Event) -> HandlerResult:
        if await self.store.is_published(outbound_event.event_id):
            logger.info(f"{self.source}: eventId {event.event_id} already relayed as {outbound_event.event_id}.")
            return HandlerResult.duplicate(outbound_event.event_id)

        await self.deliver(event, outbound)
        key = self.partition_key(outbound_event)
        records = await self.store.append_all(
            [
                StoreWrite(outbound_event, partition_key=key, pending_publish=True),
                StoreWrite(log_event),
            ],
            ignore_duplicates=True,
        )
        if records[0] is None:
            # Persisted by an earlier attempt that never confirmed the publish
            stored = await self.store.get(outbound_event.event_id)
            outbound_event = stored or outbound_event

        await self.producer.publish(self.produce_topic, key, outbound_event)
        await self.store.mark_published(outbound_event.event_id)
        logger.info(
            f"{self.source}: Event {outbound_event.event_id} sent to {self.produce_topic}; "
            f"processing log {log_event.event_id} saved."
        )
        return HandlerResult.processed(outbound_event.event_id)

    async def _relay_direct(self, event: Event, outbound: Outbound,
                            outbound_event: Event, log_event: Event) -> HandlerResult:
        await self.deliver(event, outbound)
        key = self.partition_key(outbound_event)
        await self.producer.publish(self.produce_topic, key, outbound_event)
        await self.store.append_all([
            StoreWrite(outbound_event, partition_key=key, published=True),
            StoreWrite(log_event),
        ])
        logger.info(
            f"{self.source}: Event {outbound_event.event_id} sent to {self.produce_topic}; "
            f"processing log {log_event.event_id} saved."
        )
        return HandlerResult.processed(outbound_event.event_id)

    async def flush_pending(self) -> int:
        """Publish outbound events this relay persisted but never confirmed."""
        return await republish_pending(self.store, self.producer, source=self.source)
