import asyncio

import pytest
from aiokafka.structs import TopicPartition

from core.events.consumer import EventConsumer, HandlerResult, HandlerStatus, RetryPolicy
from core.events.errors import BrokerConnectionError, EventSystemError
from core.events.memory import InMemoryBroker
from core.events.schema import Event
from core.events.state import ConnectionState

from conftest import make_consumer, make_producer, wait_until

TOPIC = "user-registration"
GROUP = "welcome-service-group"


def committed(broker, topic=TOPIC, group=GROUP):
    return {
        p: broker.committed(group, TopicPartition(topic, p))
        for p in range(broker.partitions)
        if broker.committed(group, TopicPartition(topic, p)) is not None
    }


async def publish_events(producer, count, key="user@example.com"):
    events = []
    for i in range(count):
        event = Event.create(source="UserService", topic=TOPIC, payload={"n": i})
        await producer.publish(TOPIC, key, event)
        events.append(event)
    return events


async def start_consumer(consumer, handler, topic=TOPIC):
    await consumer.connect(GROUP)
    consumer.subscribe(topic, handler)
    return asyncio.create_task(consumer.run())


class TestRetryPolicy:
    def test_delays_grow_exponentially_and_are_capped(self):
        policy = RetryPolicy(backoff_ms=100, max_backoff_ms=300, multiplier=2.0)
        assert policy.delay_for(1) == 0.1
        assert policy.delay_for(2) == 0.2
        assert policy.delay_for(3) == 0.3
        assert policy.delay_for(10) == 0.3

    def test_rejects_invalid_configuration(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(dead_letter_topic="dlq", commit_on_failure=True)

    def test_defaults_withhold_commit_on_failure(self):
        policy = RetryPolicy()
        assert policy.commit_on_failure is False
        assert policy.dead_letter_topic is None


class TestHandlerResult:
    def test_only_failures_withhold_the_commit(self):
        assert HandlerResult.processed().should_commit
        assert HandlerResult.dropped("missing email").should_commit
        assert HandlerResult.duplicate().should_commit
        failed = HandlerResult.failed(RuntimeError("boom"))
        assert not failed.should_commit
        assert failed.status is HandlerStatus.FAILED
        assert failed.detail == "boom"


class TestEventConsumer:
    async def test_delivers_each_event_once_and_commits(self, broker, event_producer):
        events = await publish_events(event_producer, 3)
        seen = []

        async def handler(event):
            seen.append(event.event_id)
            return HandlerResult.processed()

        consumer = make_consumer(broker)
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: len(seen) == 3)
        await consumer.stop()
        await task

        assert seen == [e.event_id for e in events]
        assert sum(committed(broker).values()) == 3

    async def test_handler_returning_none_counts_as_processed(self, broker, event_producer):
        await publish_events(event_producer, 1)
        calls = []

        async def handler(event):
            calls.append(event)

        consumer = make_consumer(broker)
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: committed(broker))
        await consumer.disconnect()
        await task
        assert len(calls) == 1

    async def test_failed_handler_is_retried_then_left_uncommitted(self, broker, event_producer):
        await publish_events(event_producer, 1)
        attempts = []

        async def handler(event):
            attempts.append(event.event_id)
            return HandlerResult.failed(RuntimeError("store down"))

        consumer = make_consumer(broker, RetryPolicy(max_attempts=3, backoff_ms=1))
        task = await start_consumer(consumer, handler)
        # Retried in-process, then redelivered from the same offset
        await wait_until(lambda: len(attempts) >= 6)
        await consumer.stop()
        await task

        assert len(set(attempts)) == 1
        assert committed(broker) == {}

    async def test_raising_handler_is_treated_as_failure(self, broker, event_producer):
        await publish_events(event_producer, 1)
        attempts = []

        async def handler(event):
            attempts.append(1)
            raise RuntimeError("unexpected")

        consumer = make_consumer(broker, RetryPolicy(max_attempts=2, backoff_ms=1))
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: len(attempts) >= 2)
        await consumer.stop()
        await task
        assert committed(broker) == {}

    async def test_event_succeeds_after_transient_failure(self, broker, event_producer):
        await publish_events(event_producer, 1)
        results = [HandlerResult.failed(RuntimeError("transient")), HandlerResult.processed()]
        calls = []

        async def handler(event):
            calls.append(event)
            return results[len(calls) - 1]

        consumer = make_consumer(broker, RetryPolicy(max_attempts=3, backoff_ms=1))
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: committed(broker))
        await consumer.stop()
        await task
        assert len(calls) == 2

    async def test_commit_on_failure_acknowledges_exhausted_events(self, broker, event_producer):
        await publish_events(event_producer, 2)
        calls = []

        async def handler(event):
            calls.append(event)
            return HandlerResult.failed(RuntimeError("always"))

        consumer = make_consumer(broker, RetryPolicy(max_attempts=1, commit_on_failure=True))
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: sum(committed(broker).values()) == 2)
        await consumer.stop()
        await task
        assert len(calls) == 2

    async def test_exhausted_events_go_to_the_dead_letter_topic(self, broker, event_producer):
        events = await publish_events(event_producer, 1)

        async def handler(event):
            return HandlerResult.failed(RuntimeError("bad data"))

        consumer = make_consumer(
            broker,
            RetryPolicy(max_attempts=2, backoff_ms=1, dead_letter_topic="relay-dlq"),
            dead_letter_producer=event_producer,
        )
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: broker.records("relay-dlq"))
        await wait_until(lambda: committed(broker))
        await consumer.stop()
        await task

        dead = broker.records("relay-dlq")[0]
        assert dead.value == events[0].to_wire()
        headers = dict(dead.headers)
        assert headers["x-original-topic"] == TOPIC.encode()
        assert headers["x-error"] == b"bad data"

    async def test_undecodable_message_is_skipped(self, broker, event_producer):
        await event_producer.publish_raw(TOPIC, "k", b"not-json")
        good = await publish_events(event_producer, 1, key="k")
        seen = []

        async def handler(event):
            seen.append(event.event_id)

        consumer = make_consumer(broker)
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: seen)
        await consumer.stop()
        await task

        assert seen == [good[0].event_id]
        assert sum(committed(broker).values()) == 2

    async def test_dropped_events_are_committed(self, broker, event_producer):
        await publish_events(event_producer, 1)

        async def handler(event):
            return HandlerResult.dropped("missing fields")

        consumer = make_consumer(broker)
        task = await start_consumer(consumer, handler)
        await wait_until(lambda: committed(broker))
        await consumer.stop()
        await task

    async def test_uncommitted_events_are_redelivered_to_the_next_member(self, broker, event_producer):
        events = await publish_events(event_producer, 2)
        first_seen = []

        async def crash_after_first(event):
            first_seen.append(event.event_id)
            if len(first_seen) > 1:
                return HandlerResult.failed(RuntimeError("crash"))
            return HandlerResult.processed()

        first = make_consumer(broker, RetryPolicy(max_attempts=1, backoff_ms=1))
        task = await start_consumer(first, crash_after_first)
        await wait_until(lambda: len(first_seen) >= 2)
        await first.disconnect()
        await task

        second_seen = []

        async def handler(event):
            second_seen.append(event.event_id)

        second = make_consumer(broker)
        task = await start_consumer(second, handler)
        await wait_until(lambda: second_seen)
        await second.stop()
        await task
        assert second_seen == [events[1].event_id]

    async def test_stop_waits_for_the_in_flight_handler(self, broker, event_producer):
        await publish_events(event_producer, 1)
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow_handler(event):
            started.set()
            await release.wait()
            finished.append(event.event_id)

        consumer = make_consumer(broker)
        task = await start_consumer(consumer, slow_handler)
        await started.wait()

        stopper = asyncio.create_task(consumer.stop())
        await asyncio.sleep(0.05)
        assert not stopper.done()
        release.set()
        await stopper
        await task

        assert finished
        assert committed(broker)
        assert not consumer.is_running

    async def test_connect_failure_raises_after_retries(self):
        broker = InMemoryBroker()
        broker.available = False
        consumer = EventConsumer(
            consumer_factory=lambda group_id: broker.consumer(group_id=group_id),
            policy=RetryPolicy(),
            connect_retries=2,
            connect_backoff_ms=0,
        )
        with pytest.raises(BrokerConnectionError):
            await consumer.connect(GROUP)
        assert consumer.state is ConnectionState.DISCONNECTED

    async def test_zero_connect_retries_still_makes_one_attempt(self):
        broker = InMemoryBroker()
        broker.available = False
        attempts = []

        def factory(group_id):
            attempts.append(group_id)
            return broker.consumer(group_id=group_id)

        consumer = EventConsumer(consumer_factory=factory, policy=RetryPolicy(), connect_retries=0)
        with pytest.raises(BrokerConnectionError):
            await consumer.connect(GROUP)
        assert attempts == [GROUP]

    async def test_connect_backoff_doubles_through_the_injected_sleep(self):
        broker = InMemoryBroker()
        broker.available = False
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        consumer = EventConsumer(
            consumer_factory=lambda group_id: broker.consumer(group_id=group_id),
            policy=RetryPolicy(),
            connect_retries=3,
            connect_backoff_ms=100,
            sleep=record_sleep,
        )
        with pytest.raises(BrokerConnectionError):
            await consumer.connect(GROUP)
        assert delays == [0.1, 0.2]

    async def test_subscribe_requires_connection(self, broker):
        consumer = make_consumer(broker)
        with pytest.raises(EventSystemError):
            consumer.subscribe(TOPIC, lambda event: None)

    async def test_run_requires_subscription(self, broker):
        consumer = make_consumer(broker)
        await consumer.connect(GROUP)
        with pytest.raises(EventSystemError):
            await consumer.run()
        await consumer.disconnect()

    def test_dead_letter_topic_requires_a_producer(self, broker):
        with pytest.raises(ValueError):
            make_consumer(broker, RetryPolicy(dead_letter_topic="dlq"))
