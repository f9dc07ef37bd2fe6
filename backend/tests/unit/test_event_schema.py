import json

import pytest

from core.events.errors import EventDecodeError
from core.events.schema import Event, derived_event_id, encode_value, new_event_id


class TestEventIds:
    def test_new_event_ids_are_prefixed_and_unique(self):
        ids = {new_event_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(event_id.startswith("evt_") for event_id in ids)

    def test_derived_id_is_deterministic(self):
        first = derived_event_id("WelcomeService", "outbound", "evt_abc")
        second = derived_event_id("WelcomeService", "outbound", "evt_abc")
        assert first == second
        assert first.startswith("evt_")

    def test_derived_id_depends_on_every_component(self):
        base = derived_event_id("WelcomeService", "outbound", "evt_abc")
        assert derived_event_id("NotificationService", "outbound", "evt_abc") != base
        assert derived_event_id("WelcomeService", "log", "evt_abc") != base
        assert derived_event_id("WelcomeService", "outbound", "evt_abd") != base


class TestEventSerialization:
    def test_wire_form_uses_camel_case_and_sorted_keys(self):
        event = Event.create(
            source="UserService",
            topic="user-registration",
            payload={"name": "Ana", "email": "ana@example.com"},
            snapshot={"userId": "usr_1", "status": "REGISTERED_PENDING_WELCOME"},
        )
        wire = event.to_wire()
        data = json.loads(wire)

        assert data["eventId"] == event.event_id
        assert "event_id" not in data
        assert list(data) == sorted(data)
        assert list(data["payload"]) == sorted(data["payload"])

    def test_wire_form_keeps_non_ascii_text(self):
        event = Event.create(source="WelcomeService", topic="notification-topic",
                             payload={"subject": "¡Bienvenido!"})
        assert "¡Bienvenido!".encode("utf-8") in event.to_wire()

    def test_decoding_restores_the_event(self):
        event = Event.create(source="CartService", topic="cart-updates",
                             payload={"userId": "u1", "quantity": 2}, snapshot={"totalItems": 2})
        restored = Event.from_wire(event.to_wire())
        assert restored == event

    def test_snapshot_is_optional(self):
        event = Event.create(source="CartService", topic="cart-removals", payload={"userId": "u1"})
        assert Event.from_wire(event.to_wire()).snapshot is None

    def test_message_with_only_id_payload_and_snapshot_decodes(self):
        event = Event.from_wire(
            b'{"eventId":"evt_1","payload":{"email":"ana@example.com","name":"Ana"},'
            b'"snapshot":{"userId":"usr_1"}}'
        )
        assert event.event_id == "evt_1"
        assert event.payload_value("email") == "ana@example.com"
        assert event.snapshot_value("userId") == "usr_1"
        assert event.timestamp is None
        assert event.source is None
        assert event.topic is None

    def test_encode_value_is_canonical(self):
        assert encode_value({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'


class TestEventDecodeErrors:
    @pytest.mark.parametrize("value", [
        None,
        b"not json",
        b"\xff\xfe",
        b"[1, 2, 3]",
        b'"just a string"',
    ])
    def test_rejects_values_that_are_not_json_objects(self, value):
        with pytest.raises(EventDecodeError):
            Event.from_wire(value)

    def test_rejects_objects_missing_required_fields(self):
        with pytest.raises(EventDecodeError):
            Event.from_wire(b'{"eventId": "evt_1", "source": "UserService"}')

    def test_rejects_empty_event_id(self):
        with pytest.raises(EventDecodeError):
            Event.from_dict({
                "eventId": "",
                "timestamp": "2024-01-01T00:00:00Z",
                "source": "UserService",
                "topic": "user-registration",
                "payload": {},
            })


class TestEventAccessors:
    def test_payload_and_snapshot_lookup(self):
        event = Event.create(source="s", topic="t", payload={"email": "a@b.c"}, snapshot={"userId": "u"})
        assert event.payload_value("email") == "a@b.c"
        assert event.payload_value("missing") is None
        assert event.snapshot_value("userId") == "u"

    def test_lookup_on_non_dict_payload_and_missing_snapshot(self):
        event = Event.create(source="s", topic="t", payload=["not", "a", "dict"])
        assert event.payload_value("email") is None
        assert event.snapshot_value("userId") is None

    def test_events_are_immutable(self):
        event = Event.create(source="s", topic="t", payload={})
        with pytest.raises(Exception):
            event.source = "other"
