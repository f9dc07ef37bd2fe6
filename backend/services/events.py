"""
Create-and-publish operation used by the HTTP services, plus read access to
stored events.
"""
import logging
from typing import Any, Dict, List, Optional

from core.events.producer import EventProducer
from core.events.relay import republish_pending
from core.events.schema import Event
from core.events.store import EventStore
from core.exceptions import NotFoundException

logger = logging.getLogger(__name__)


class EventService:
    def __init__(self, producer: EventProducer, store: EventStore):
        self.producer = producer
        self.store = store

    async def create_and_publish(
        self,
        source: str,
        topic: str,
        key: Optional[str],
        payload: Any,
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """
        Persist a fresh event as pending, publish it, then mark it published.

        Raises:
            PersistError: the event could not be stored; nothing was published.
            PublishError: the broker rejected it; the event stays pending and
                is picked up by `flush_pending`.
        """
        event = Event.create(source=source, topic=topic, payload=payload, snapshot=snapshot)
        await self.store.append(event, partition_key=key, pending_publish=True)
        await self.producer.publish(topic, key, event)
        await self.store.mark_published(event.event_id)
        logger.info(f"{source}: Event {event.event_id} sent to {topic} and saved.")
        return event

    async def flush_pending(self, source: Optional[str] = None) -> int:
        return await republish_pending(self.store, self.producer, source=source)

    async def get_event(self, event_id: str) -> Dict[str, Any]:
        record = await self.store.get_record(event_id)
        if record is None:
            raise NotFoundException(f"Event {event_id} not found.", resource="event")
        return record.to_dict()

    async def get_lineage(self, event_id: str) -> List[Dict[str, Any]]:
        chain = await self.store.lineage(event_id)
        if not chain:
            raise NotFoundException(f"Event {event_id} not found.", resource="event")
        return [event.to_dict() for event in chain]
