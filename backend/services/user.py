import logging
import uuid

from core.config import settings
from schemas.user import UserRegisterRequest, UserRegisterResponse
from services.events import EventService

logger = logging.getLogger(__name__)

SOURCE_SERVICE_NAME = "UserService"


def new_user_id() -> str:
    return f"usr_{uuid.uuid4().hex[:8]}"


class UserService:
    """Registration only emits the event; user records are not stored."""

    def __init__(self, events: EventService):
        self.events = events

    async def register(self, request: UserRegisterRequest) -> UserRegisterResponse:
        logger.info(f"{SOURCE_SERVICE_NAME}: Received registration request for email: {request.email}")
        user_id = new_user_id()
        event = await self.events.create_and_publish(
            source=SOURCE_SERVICE_NAME,
            topic=settings.KAFKA_TOPIC_USER_REGISTRATION,
            key=str(request.email),
            payload=request.event_payload(),
            snapshot={
                "userId": user_id,
                "status": "REGISTERED_PENDING_WELCOME",
            },
        )
        return UserRegisterResponse(user_id=user_id, event_id=event.event_id)
