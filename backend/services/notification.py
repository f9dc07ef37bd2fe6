"""
Notification dispatch relay.

Consumes notification requests, hands them to a NotificationSender and
forwards an email-service event recording what was sent. The default sender
only logs the message; a real provider plugs in through the same interface.
"""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from core.config import settings
from core.events.errors import EventSystemError
from core.events.relay import Outbound, RelayHandler
from core.events.schema import Event

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    WELCOME = "WELCOME"
    INVOICE = "INVOICE"
    GENERIC = "GENERIC"


def classify_notification(subject: str) -> NotificationType:
    """Notification type inferred from the subject line."""
    if "Bienvenido" in subject:
        return NotificationType.WELCOME
    if "Factura" in subject:
        return NotificationType.INVOICE
    return NotificationType.GENERIC


class NotificationDeliveryError(EventSystemError):
    """The notification provider rejected or failed to send a message"""


class NotificationSender(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, content: str):
        """Deliver one message. Raise NotificationDeliveryError on failure."""


class LoggingNotificationSender(NotificationSender):
    """Simulates the provider call by logging the message."""

    async def send(self, to: str, subject: str, content: str):
        logger.info(f"NotificationService: Simulating sending notification to {to} with subject: \"{subject}\"")
        logger.debug(f"NotificationService: Content: {content}")


class NotificationDispatchRelay(RelayHandler):
    name = "notification"
    source = "NotificationService"
    required_payload_fields = ("to", "subject", "content")
    processed_status = "PROCESSED_NOTIFICATION_REQUEST_AND_SENT"

    def __init__(self, producer, store, sender: Optional[NotificationSender] = None, **kwargs):
        super().__init__(producer, store, **kwargs)
        self.sender = sender or LoggingNotificationSender()

    @classmethod
    def default_consume_topic(cls) -> str:
        return settings.KAFKA_TOPIC_NOTIFICATION

    @classmethod
    def default_produce_topic(cls) -> str:
        return settings.KAFKA_TOPIC_EMAIL

    def transform(self, event: Event) -> Outbound:
        to = event.payload_value("to")
        subject = event.payload_value("subject")
        content = event.payload_value("content")
        return Outbound(
            payload={"to": to, "subject": subject, "content": content},
            snapshot={
                "status": "NOTIFICATION_SENT_TO_PROVIDER",
                "notificationType": classify_notification(str(subject)).value,
            },
        )

    def partition_key(self, outbound_event: Event) -> Optional[str]:
        return outbound_event.payload_value("to")

    async def deliver(self, event: Event, outbound: Outbound):
        payload = outbound.payload
        try:
            await self.sender.send(payload["to"], payload["subject"], payload["content"])
        except NotificationDeliveryError:
            raise
        except Exception as e:
            raise NotificationDeliveryError(f"Failed to send notification for eventId {event.event_id}: {e}") from e
