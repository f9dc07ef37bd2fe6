"""
Welcome relay: turns a user registration into a welcome notification request.
"""
import logging
from typing import Optional

from core.config import settings
from core.events.relay import Outbound, RelayHandler
from core.events.schema import Event

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "¡Bienvenido a nuestra plataforma!"


def welcome_content(name: str, user_id: str) -> str:
    return (
        f"Hola {name}, gracias por registrarte en nuestro e-commerce. "
        f"Tu ID de usuario es {user_id}."
    )


class WelcomeRelay(RelayHandler):
    name = "welcome"
    source = "WelcomeService"
    required_payload_fields = ("email", "name")
    required_snapshot_fields = ("userId",)
    processed_status = "PROCESSED_USER_REGISTRATION"

    @classmethod
    def default_consume_topic(cls) -> str:
        return settings.KAFKA_TOPIC_USER_REGISTRATION

    @classmethod
    def default_produce_topic(cls) -> str:
        return settings.KAFKA_TOPIC_NOTIFICATION

    def transform(self, event: Event) -> Outbound:
        email = event.payload_value("email")
        user_id = event.snapshot_value("userId")
        payload = {
            "to": email,
            "subject": WELCOME_SUBJECT,
            "content": welcome_content(event.payload_value("name"), user_id),
        }
        snapshot = {
            "status": "WELCOME_NOTIFICATION_QUEUED",
            "targetUserId": user_id,
        }
        return Outbound(payload=payload, snapshot=snapshot)

    def partition_key(self, outbound_event: Event) -> Optional[str]:
        # Keyed by recipient so every notification for one address stays ordered
        return outbound_event.payload_value("to")
