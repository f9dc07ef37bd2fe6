import asyncio

import pytest
from aiokafka.errors import IllegalStateError, KafkaConnectionError
from aiokafka.structs import TopicPartition

from core.events.memory import InMemoryBroker


async def drain(consumer, max_batches=20):
    values = []
    for _ in range(max_batches):
        batch = await consumer.getmany(timeout_ms=0)
        if not batch:
            break
        for records in batch.values():
            values.extend(record.value for record in records)
    return values


class TestInMemoryBroker:
    async def test_same_key_always_lands_on_the_same_partition(self):
        broker = InMemoryBroker(partitions=4)
        producer = broker.producer()
        await producer.start()
        partitions = {
            (await producer.send_and_wait("orders", value=b"x", key=b"user-1")).partition
            for _ in range(10)
        }
        assert len(partitions) == 1

    async def test_records_for_one_key_are_delivered_in_publish_order(self):
        broker = InMemoryBroker(partitions=3)
        producer = broker.producer()
        await producer.start()
        for i in range(20):
            key = b"a" if i % 2 == 0 else b"b"
            await producer.send_and_wait("t", value=f"{key.decode()}-{i}".encode(), key=key)

        consumer = broker.consumer("t", group_id="g")
        await consumer.start()
        values = [v.decode() for v in await drain(consumer)]

        assert len(values) == 20
        for key in ("a", "b"):
            seen = [int(v.split("-")[1]) for v in values if v.startswith(key)]
            assert seen == sorted(seen)

    async def test_committed_offsets_are_resumed_by_the_group(self):
        broker = InMemoryBroker(partitions=1)
        producer = broker.producer()
        await producer.start()
        for i in range(3):
            await producer.send_and_wait("t", value=str(i).encode(), key=b"k")

        first = broker.consumer("t", group_id="g")
        await first.start()
        batch = await first.getmany(timeout_ms=0, max_records=1)
        (tp, records), = batch.items()
        await first.commit({tp: records[0].offset + 1})
        await first.stop()

        second = broker.consumer("t", group_id="g")
        await second.start()
        assert await drain(second) == [b"1", b"2"]

    async def test_latest_reset_skips_existing_records(self):
        broker = InMemoryBroker(partitions=1)
        producer = broker.producer()
        await producer.start()
        await producer.send_and_wait("t", value=b"old")

        consumer = broker.consumer("t", group_id="g", auto_offset_reset="latest")
        await consumer.start()
        await producer.send_and_wait("t", value=b"new")
        assert await drain(consumer) == [b"new"]

    async def test_seek_rewinds_delivery(self):
        broker = InMemoryBroker(partitions=1)
        producer = broker.producer()
        await producer.start()
        await producer.send_and_wait("t", value=b"only")

        consumer = broker.consumer("t", group_id="g")
        await consumer.start()
        assert await drain(consumer) == [b"only"]
        consumer.seek(TopicPartition("t", 0), 0)
        assert await drain(consumer) == [b"only"]

    async def test_unavailable_broker_refuses_clients_and_writes(self):
        broker = InMemoryBroker()
        producer = broker.producer()
        await producer.start()
        broker.available = False

        with pytest.raises(KafkaConnectionError):
            await producer.send_and_wait("t", value=b"x")
        with pytest.raises(KafkaConnectionError):
            await broker.producer().start()
        with pytest.raises(KafkaConnectionError):
            await broker.consumer("t", group_id="g").start()

    async def test_clients_must_be_started(self):
        broker = InMemoryBroker()
        with pytest.raises(IllegalStateError):
            await broker.producer().send_and_wait("t", value=b"x")
        with pytest.raises(IllegalStateError):
            await broker.consumer("t", group_id="g").getmany(timeout_ms=0)

    async def test_getmany_waits_for_new_data(self):
        broker = InMemoryBroker(partitions=1)
        producer = broker.producer()
        await producer.start()
        consumer = broker.consumer("t", group_id="g")
        await consumer.start()

        assert await consumer.getmany(timeout_ms=10) == {}
        await producer.send_and_wait("t", value=b"late")
        batch = await consumer.getmany(timeout_ms=100)
        assert [r.value for records in batch.values() for r in records] == [b"late"]

    def test_broker_can_be_reused_across_event_loops(self):
        broker = InMemoryBroker(partitions=1)

        async def exchange(value):
            producer = broker.producer()
            await producer.start()
            consumer = broker.consumer("t", group_id=value.decode())
            await consumer.start()
            await producer.send_and_wait("t", value=value)
            batch = await consumer.getmany(timeout_ms=100)
            idle = await consumer.getmany(timeout_ms=10)
            await consumer.stop()
            await producer.stop()
            return [r.value for records in batch.values() for r in records], idle

        assert asyncio.run(exchange(b"one")) == ([b"one"], {})
        assert asyncio.run(exchange(b"two")) == ([b"one", b"two"], {})

    def test_rejects_invalid_partition_count(self):
        with pytest.raises(ValueError):
            InMemoryBroker(partitions=0)
