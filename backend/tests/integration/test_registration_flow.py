"""
Registration to email hand-off across both relays, sharing one broker and
one event store the way the deployed services share Kafka and the database.
"""
import asyncio

import pytest
import pytest_asyncio

from core.events.consumer import HandlerStatus
from services.notification import NotificationDispatchRelay, NotificationSender
from services.welcome import WELCOME_SUBJECT, WelcomeRelay

from conftest import decoded, make_consumer, wait_until

pytestmark = pytest.mark.integration


class RecordingSender(NotificationSender):
    def __init__(self):
        self.sent = []

    async def send(self, to: str, subject: str, content: str):
        self.sent.append((to, subject, content))


@pytest_asyncio.fixture
async def relays(broker, event_producer, event_store):
    """Welcome and notification relays running as separate consumer groups"""
    sender = RecordingSender()
    welcome = make_consumer(broker)
    notification = make_consumer(broker)
    await welcome.connect("welcome-service-group")
    await notification.connect("notification-service-group")
    welcome.subscribe("user-registration", WelcomeRelay(event_producer, event_store))
    notification.subscribe(
        "notification-topic", NotificationDispatchRelay(event_producer, event_store, sender=sender)
    )
    tasks = [asyncio.create_task(welcome.run()), asyncio.create_task(notification.run())]
    yield sender
    for consumer in (welcome, notification):
        await consumer.disconnect()
    await asyncio.gather(*tasks)


class TestRegistrationFlow:
    async def test_registration_reaches_the_email_service(self, client, broker, event_store, relays):
        response = await client.post("/api/users/register", json={
            "name": "Ana", "email": "ana@example.com", "password": "secreto",
        })
        assert response.status_code == 201
        user_id = response.json()["data"]["userId"]
        registration_id = response.json()["data"]["eventId"]

        await wait_until(lambda: len(broker.records("email-service")) == 1)

        welcome = decoded(broker, "notification-topic")[0]
        assert welcome.payload["subject"] == WELCOME_SUBJECT
        assert welcome.snapshot["originalEventId"] == registration_id
        assert welcome.snapshot["targetUserId"] == user_id

        email = decoded(broker, "email-service")[0]
        assert email.source == "NotificationService"
        assert email.payload == welcome.payload
        assert email.snapshot == {
            "status": "NOTIFICATION_SENT_TO_PROVIDER",
            "notificationType": "WELCOME",
            "originalEventId": welcome.event_id,
        }
        assert relays.sent == [("ana@example.com", WELCOME_SUBJECT, welcome.payload["content"])]

        lineage = await event_store.lineage(email.event_id)
        assert [e.event_id for e in lineage] == [email.event_id, welcome.event_id, registration_id]

        # Both relays leave a processing log on the topic they consume
        assert [e.source for e in await event_store.list_by_topic("user-registration")] == [
            "UserService", "WelcomeService",
        ]
        assert {e.source for e in await event_store.list_by_topic("notification-topic")} == {
            "WelcomeService", "NotificationService",
        }

    async def test_incomplete_registration_stops_at_the_welcome_relay(
            self, client, broker, event_producer, event_store, relays):
        from services.events import EventService

        # Bypass request validation to put a registration without a user id on the topic
        await EventService(event_producer, event_store).create_and_publish(
            source="UserService",
            topic="user-registration",
            key="ana@example.com",
            payload={"name": "Ana", "email": "ana@example.com"},
            snapshot={"status": "REGISTERED_PENDING_WELCOME"},
        )
        response = await client.post("/api/users/register", json={
            "name": "Luis", "email": "luis@example.com", "password": "x",
        })
        assert response.status_code == 201

        await wait_until(lambda: len(broker.records("email-service")) == 1)
        assert [e.payload["to"] for e in decoded(broker, "notification-topic")] == ["luis@example.com"]

    async def test_cart_removal_reminder_is_dispatched(self, client, broker, relays):
        await client.post("/api/cart/items", json={"userId": "u1", "productId": "prod_1", "quantity": 1})
        response = await client.request("DELETE", "/api/cart/items/prod_1", json={"userId": "u1"})
        assert response.status_code == 204

        await wait_until(lambda: len(broker.records("email-service")) == 1)
        email = decoded(broker, "email-service")[0]
        assert email.payload["to"] == "user-u1@example.com"
        assert email.snapshot["notificationType"] == "GENERIC"
        assert relays.sent[0][0] == "user-u1@example.com"
