from fastapi import Depends, Request

from core.events.producer import EventProducer
from core.events.store import EventStore
from services.events import EventService


def get_event_producer(request: Request) -> EventProducer:
    return request.app.state.event_producer


def get_event_store(request: Request) -> EventStore:
    return request.app.state.event_store


def get_event_service(
    producer: EventProducer = Depends(get_event_producer),
    store: EventStore = Depends(get_event_store),
) -> EventService:
    return EventService(producer, store)
