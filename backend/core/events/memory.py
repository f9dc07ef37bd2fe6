"""
In-process message channel.

A partitioned, per-key ordered log with consumer-group offsets. Producers and
consumers expose the subset of the aiokafka API the event adapters use, so the
same EventProducer/EventConsumer code runs against Kafka or against this
broker (tests, and local runs with KAFKA_BOOTSTRAP_SERVERS=memory://).

Every consumer in a group is assigned all partitions of its subscribed topics;
group rebalancing is not modelled.
"""
import asyncio
import itertools
import logging
import time
import zlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from aiokafka.errors import IllegalStateError, KafkaConnectionError
from aiokafka.structs import TopicPartition

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory://"

Headers = Sequence[Tuple[str, bytes]]


@dataclass(frozen=True)
class MemoryRecordMetadata:
    topic: str
    partition: int
    offset: int
    timestamp: int


@dataclass(frozen=True)
class MemoryRecord:
    topic: str
    partition: int
    offset: int
    key: Optional[bytes]
    value: Optional[bytes]
    timestamp: int
    headers: Tuple[Tuple[str, bytes], ...] = field(default_factory=tuple)


class InMemoryBroker:
    """Topics are created on first use with a fixed number of partitions."""

    def __init__(self, partitions: int = 3):
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.partitions = partitions
        self.available = True
        self._logs: Dict[str, List[List[MemoryRecord]]] = {}
        self._committed: Dict[Tuple[str, TopicPartition], int] = {}
        self._round_robin = itertools.count()
        self._condition: Optional[asyncio.Condition] = None
        self._condition_loop: Optional[asyncio.AbstractEventLoop] = None

    # --- topics -----------------------------------------------------------

    def _topic_log(self, topic: str) -> List[List[MemoryRecord]]:
        if topic not in self._logs:
            self._logs[topic] = [[] for _ in range(self.partitions)]
        return self._logs[topic]

    def partitions_for(self, topic: str) -> List[TopicPartition]:
        return [TopicPartition(topic, p) for p in range(len(self._topic_log(topic)))]

    def partition_for(self, key: Optional[bytes]) -> int:
        if key is None:
            return next(self._round_robin) % self.partitions
        return zlib.crc32(key) % self.partitions

    def end_offset(self, tp: TopicPartition) -> int:
        return len(self._topic_log(tp.topic)[tp.partition])

    def record_at(self, tp: TopicPartition, offset: int) -> Optional[MemoryRecord]:
        log = self._topic_log(tp.topic)[tp.partition]
        if 0 <= offset < len(log):
            return log[offset]
        return None

    def records(self, topic: str) -> List[MemoryRecord]:
        """Every record of a topic, partition by partition."""
        return [record for log in self._topic_log(topic) for record in log]

    # --- group offsets ----------------------------------------------------

    def committed(self, group_id: str, tp: TopicPartition) -> Optional[int]:
        return self._committed.get((group_id, tp))

    def commit(self, group_id: str, tp: TopicPartition, offset: int):
        self._committed[(group_id, tp)] = offset

    # --- notification -----------------------------------------------------

    def _get_condition(self) -> asyncio.Condition:
        # A Condition is bound to one loop; the broker outlives any single asyncio.run
        loop = asyncio.get_running_loop()
        if self._condition is None or self._condition_loop is not loop:
            self._condition = asyncio.Condition()
            self._condition_loop = loop
        return self._condition

    async def append(
        self,
        topic: str,
        value: Optional[bytes],
        key: Optional[bytes] = None,
        headers: Optional[Headers] = None,
    ) -> MemoryRecordMetadata:
        if not self.available:
            raise KafkaConnectionError("In-memory broker unavailable")
        partition = self.partition_for(key)
        log = self._topic_log(topic)[partition]
        record = MemoryRecord(
            topic=topic,
            partition=partition,
            offset=len(log),
            key=key,
            value=value,
            timestamp=int(time.time() * 1000),
            headers=tuple(headers or ()),
        )
        log.append(record)
        condition = self._get_condition()
        async with condition:
            condition.notify_all()
        return MemoryRecordMetadata(topic, partition, record.offset, record.timestamp)

    async def wait_for_data(self, predicate, timeout: float) -> bool:
        condition = self._get_condition()
        async with condition:
            try:
                await asyncio.wait_for(condition.wait_for(predicate), timeout)
            except asyncio.TimeoutError:
                return False
        return True

    async def wake_all(self):
        condition = self._get_condition()
        async with condition:
            condition.notify_all()

    # --- clients ----------------------------------------------------------

    def producer(self, **_config) -> "InMemoryProducer":
        return InMemoryProducer(self)

    def consumer(self, *topics: str, group_id: Optional[str] = None,
                 auto_offset_reset: str = "earliest", **_config) -> "InMemoryConsumer":
        consumer = InMemoryConsumer(self, group_id=group_id, auto_offset_reset=auto_offset_reset)
        if topics:
            consumer.subscribe(topics=list(topics))
        return consumer


class InMemoryProducer:
    def __init__(self, broker: InMemoryBroker):
        self._broker = broker
        self._started = False

    async def start(self):
        if not self._broker.available:
            raise KafkaConnectionError("Unable to bootstrap from in-memory broker")
        self._started = True

    async def flush(self):
        return None

    async def stop(self):
        self._started = False

    async def send_and_wait(self, topic: str, value: Optional[bytes] = None,
                            key: Optional[bytes] = None, headers: Optional[Headers] = None,
                            **_kwargs) -> MemoryRecordMetadata:
        if not self._started:
            raise IllegalStateError("Producer is not started")
        return await self._broker.append(topic, value, key=key, headers=headers)


class InMemoryConsumer:
    def __init__(self, broker: InMemoryBroker, group_id: Optional[str], auto_offset_reset: str = "earliest"):
        if auto_offset_reset not in ("earliest", "latest"):
            raise ValueError(f"Unsupported auto_offset_reset: {auto_offset_reset}")
        self._broker = broker
        self._group_id = group_id
        self._auto_offset_reset = auto_offset_reset
        self._topics: List[str] = []
        self._positions: Dict[TopicPartition, int] = {}
        self._started = False
        self._next_partition = 0

    async def start(self):
        if not self._broker.available:
            raise KafkaConnectionError("Unable to bootstrap from in-memory broker")
        self._started = True

    async def stop(self):
        self._started = False
        await self._broker.wake_all()

    def subscribe(self, topics: Sequence[str]):
        self._topics = list(topics)
        self._positions = {}
        for topic in self._topics:
            for tp in self._broker.partitions_for(topic):
                self._positions[tp] = self._initial_position(tp)

    def _initial_position(self, tp: TopicPartition) -> int:
        committed = self._broker.committed(self._group_id, tp) if self._group_id else None
        if committed is not None:
            return committed
        if self._auto_offset_reset == "latest":
            return self._broker.end_offset(tp)
        return 0

    def _has_data(self) -> bool:
        if not self._started:
            return True
        return any(pos < self._broker.end_offset(tp) for tp, pos in self._positions.items())

    async def getmany(self, *partitions: TopicPartition, timeout_ms: int = 0,
                      max_records: Optional[int] = None) -> Dict[TopicPartition, List[MemoryRecord]]:
        if not self._started:
            raise IllegalStateError("Consumer is not started")
        if not self._has_data() and timeout_ms > 0:
            await self._broker.wait_for_data(self._has_data, timeout_ms / 1000)
        if not self._started:
            return {}

        assigned = sorted(self._positions, key=lambda tp: (tp.topic, tp.partition))
        if partitions:
            assigned = [tp for tp in assigned if tp in partitions]
        remaining = max_records if max_records is not None else float("inf")
        result: Dict[TopicPartition, List[MemoryRecord]] = {}

        # Rotate the starting partition so one busy key cannot starve the others
        count = len(assigned)
        for i in range(count):
            if remaining <= 0:
                break
            tp = assigned[(self._next_partition + i) % count]
            position = self._positions[tp]
            while remaining > 0:
                record = self._broker.record_at(tp, position)
                if record is None:
                    break
                result.setdefault(tp, []).append(record)
                position += 1
                remaining -= 1
            self._positions[tp] = position
        if count:
            self._next_partition = (self._next_partition + 1) % count
        return result

    def seek(self, tp: TopicPartition, offset: int):
        if tp not in self._positions:
            raise IllegalStateError(f"Partition {tp} is not assigned")
        self._positions[tp] = offset

    async def commit(self, offsets: Optional[Dict[TopicPartition, int]] = None):
        if not self._group_id:
            raise IllegalStateError("Cannot commit without a group_id")
        if offsets is None:
            offsets = dict(self._positions)
        for tp, offset in offsets.items():
            self._broker.commit(self._group_id, tp, offset)

    async def committed(self, tp: TopicPartition) -> Optional[int]:
        if not self._group_id:
            return None
        return self._broker.committed(self._group_id, tp)

    async def position(self, tp: TopicPartition) -> int:
        return self._positions[tp]


# Shared broker for processes configured with KAFKA_BOOTSTRAP_SERVERS=memory://
memory_broker = InMemoryBroker()
