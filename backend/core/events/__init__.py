"""
Event core: canonical schema, broker adapters and consumer runtime.

Store, relay and worker modules depend on the ORM models and are imported
from their own modules (core.events.store, core.events.relay,
core.events.runtime).
"""

from .errors import (
    EventSystemError,
    BrokerConnectionError,
    StoreConnectionError,
    PublishError,
    PersistError,
    DuplicateEventError,
    EventValidationError,
    EventDecodeError,
)
from .schema import Event, new_event_id, derived_event_id
from .state import ConnectionState
from .memory import InMemoryBroker, memory_broker, MEMORY_SCHEME
from .producer import EventProducer, PublishResult
from .consumer import EventConsumer, HandlerResult, HandlerStatus, RetryPolicy

__all__ = [
    'EventSystemError',
    'BrokerConnectionError',
    'StoreConnectionError',
    'PublishError',
    'PersistError',
    'DuplicateEventError',
    'EventValidationError',
    'EventDecodeError',
    'Event',
    'new_event_id',
    'derived_event_id',
    'ConnectionState',
    'InMemoryBroker',
    'memory_broker',
    'MEMORY_SCHEME',
    'EventProducer',
    'PublishResult',
    'EventConsumer',
    'HandlerResult',
    'HandlerStatus',
    'RetryPolicy',
]
