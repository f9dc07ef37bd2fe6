"""
Error taxonomy for the event relay core.

Connection errors are fatal at startup, validation errors drop the event,
publish/persist errors fail the handler so the consumer retry policy engages.
"""
from typing import Iterable, Optional


class EventSystemError(Exception):
    """Base class for every error raised by the event system"""


class BrokerConnectionError(EventSystemError, ConnectionError):
    """The message broker could not be reached"""


class StoreConnectionError(EventSystemError, ConnectionError):
    """The event store could not be reached"""


class PublishError(EventSystemError):
    """A message could not be written to the broker"""

    def __init__(self, message: str, topic: Optional[str] = None):
        self.topic = topic
        super().__init__(message)


class PersistError(EventSystemError):
    """An event could not be written to the event store"""

    def __init__(self, message: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(message)


class DuplicateEventError(PersistError):
    """An event with the same eventId is already stored"""


class EventValidationError(EventSystemError):
    """A consumed event lacks the fields a relay needs"""

    def __init__(self, message: str, missing: Iterable[str] = ()):
        self.missing = list(missing)
        super().__init__(message)


class EventDecodeError(EventSystemError):
    """A message value is not a JSON event object"""
