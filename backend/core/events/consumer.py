"""
Consumer runtime: joins a consumer group, delivers one event at a time to a
handler and commits the offset according to an explicit RetryPolicy.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError

from core.config import settings
from .errors import BrokerConnectionError, EventDecodeError, EventSystemError, PublishError
from .memory import MEMORY_SCHEME, memory_broker
from .producer import BROKER_ERRORS, EventProducer
from .schema import Event
from .state import ConnectionState

logger = logging.getLogger(__name__)

ConsumerFactory = Callable[[str], Any]


class HandlerStatus(str, Enum):
    PROCESSED = "processed"
    DROPPED = "dropped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of one handler invocation; only FAILED withholds the commit."""
    status: HandlerStatus
    detail: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def processed(cls, detail: Optional[str] = None) -> "HandlerResult":
        return cls(HandlerStatus.PROCESSED, detail)

    @classmethod
    def dropped(cls, reason: str) -> "HandlerResult":
        return cls(HandlerStatus.DROPPED, reason)

    @classmethod
    def duplicate(cls, detail: Optional[str] = None) -> "HandlerResult":
        return cls(HandlerStatus.DUPLICATE, detail)

    @classmethod
    def failed(cls, error: BaseException) -> "HandlerResult":
        return cls(HandlerStatus.FAILED, str(error), error)

    @property
    def should_commit(self) -> bool:
        return self.status is not HandlerStatus.FAILED


EventHandler = Callable[[Event], Awaitable[Optional[HandlerResult]]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    What the runtime does when a handler fails.

    Attempts are retried in-process with exponential backoff. Once exhausted,
    the message goes to `dead_letter_topic` if set; otherwise it is committed
    only when `commit_on_failure` is on, and redelivered when it is off.
    """
    max_attempts: int = 3
    backoff_ms: int = 200
    max_backoff_ms: int = 10000
    multiplier: float = 2.0
    dead_letter_topic: Optional[str] = None
    commit_on_failure: bool = False

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.dead_letter_topic and self.commit_on_failure:
            raise ValueError("dead_letter_topic and commit_on_failure are mutually exclusive")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay_ms = self.backoff_ms * (self.multiplier ** (attempt - 1))
        return min(delay_ms, self.max_backoff_ms) / 1000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.CONSUMER_MAX_ATTEMPTS,
            backoff_ms=settings.CONSUMER_BACKOFF_MS,
            max_backoff_ms=settings.CONSUMER_MAX_BACKOFF_MS,
            dead_letter_topic=settings.dead_letter_topic,
            commit_on_failure=settings.CONSUMER_COMMIT_ON_FAILURE,
        )


def kafka_consumer_factory(
    bootstrap_servers: str,
    client_id: str,
    auto_offset_reset: str,
    request_timeout_ms: int,
) -> ConsumerFactory:
    def factory(group_id: str):
        if bootstrap_servers.startswith(MEMORY_SCHEME):
            return memory_broker.consumer(group_id=group_id, auto_offset_reset=auto_offset_reset)
        return AIOKafkaConsumer(
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            group_id=group_id,
            enable_auto_commit=False,  # Offsets are committed by the runtime after the handler returns
            auto_offset_reset=auto_offset_reset,
            request_timeout_ms=request_timeout_ms,
        )
    return factory


class EventConsumer:
    """Single delivery loop per process; one handler invocation in flight at a time."""

    def __init__(
        self,
        consumer_factory: Optional[ConsumerFactory] = None,
        policy: Optional[RetryPolicy] = None,
        dead_letter_producer: Optional[EventProducer] = None,
        connect_retries: Optional[int] = None,
        connect_backoff_ms: Optional[int] = None,
        poll_timeout_ms: int = 500,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._factory = consumer_factory or kafka_consumer_factory(
            settings.KAFKA_BOOTSTRAP_SERVERS,
            settings.KAFKA_CLIENT_ID,
            settings.KAFKA_AUTO_OFFSET_RESET,
            settings.KAFKA_REQUEST_TIMEOUT_MS,
        )
        self.policy = policy or RetryPolicy.from_settings()
        if self.policy.dead_letter_topic and dead_letter_producer is None:
            raise ValueError("A dead-letter topic requires a dead_letter_producer")
        self._dead_letter_producer = dead_letter_producer
        self._connect_retries = max(
            settings.KAFKA_CONNECT_RETRIES if connect_retries is None else connect_retries, 1
        )
        self._connect_backoff_ms = (
            settings.KAFKA_CONNECT_BACKOFF_MS if connect_backoff_ms is None else connect_backoff_ms
        )
        self._poll_timeout_ms = poll_timeout_ms
        self._sleep = sleep

        self._consumer = None
        self._state = ConnectionState.DISCONNECTED
        self.group_id: Optional[str] = None
        self.topic: Optional[str] = None
        self._handler: Optional[EventHandler] = None
        self._stop_requested = False
        self._running = False
        self._stopped = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_running(self) -> bool:
        return self._running

    async def connect(self, group_id: str):
        """
        Join the consumer group.

        Raises:
            BrokerConnectionError: every attempt failed.
        """
        if self._state is ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        self.group_id = group_id
        delay = self._connect_backoff_ms / 1000
        last_error = None
        for attempt in range(1, self._connect_retries + 1):
            consumer = self._factory(group_id)
            try:
                await consumer.start()
            except BROKER_ERRORS as e:
                last_error = e
                logger.warning(f"Kafka Consumer connection attempt {attempt}/{self._connect_retries} failed: {e}")
                await self._close_quietly(consumer)
                if attempt < self._connect_retries:
                    await self._sleep(delay)
                    delay *= 2
                continue
            self._consumer = consumer
            self._state = ConnectionState.CONNECTED
            logger.info(f"Kafka Consumer connected successfully (group {group_id}).")
            return

        self._state = ConnectionState.DISCONNECTED
        raise BrokerConnectionError(
            f"Kafka Consumer could not connect after {self._connect_retries} attempts"
        ) from last_error

    def subscribe(self, topic: str, handler: EventHandler):
        if not self.is_connected:
            raise EventSystemError("Kafka Consumer is not connected.")
        self._consumer.subscribe(topics=[topic])
        self.topic = topic
        self._handler = handler
        logger.info(f"Consumer subscribed to topic: {topic}")

    async def run(self):
        """Deliver messages until stop() is requested."""
        if self._handler is None:
            raise EventSystemError("Consumer has no subscription; call subscribe() first.")

        self._running = True
        self._stop_requested = False
        self._stopped.clear()
        try:
            while not self._stop_requested:
                try:
                    batch = await self._consumer.getmany(timeout_ms=self._poll_timeout_ms, max_records=1)
                except KafkaError as e:
                    logger.error(f"Error fetching from topic {self.topic}: {e}")
                    await self._sleep(self.policy.delay_for(1))
                    continue
                for tp, records in batch.items():
                    for record in records:
                        if self._stop_requested:
                            # Fetched but not handled; left uncommitted for the next member
                            break
                        await self._process(tp, record)
        finally:
            self._running = False
            self._stopped.set()

    def request_stop(self):
        """Ask the loop to exit after the in-flight handler completes."""
        self._stop_requested = True

    async def stop(self):
        self.request_stop()
        if self._running:
            await self._stopped.wait()

    async def disconnect(self):
        """Stop delivery, then leave the group. Safe to call repeatedly."""
        await self.stop()
        consumer = self._consumer
        self._consumer = None
        self._state = ConnectionState.DISCONNECTED
        if consumer is not None:
            await self._close_quietly(consumer)
            logger.info("Kafka Consumer disconnected.")

    async def _process(self, tp, record):
        try:
            event = Event.from_wire(record.value)
        except EventDecodeError as e:
            logger.error(f"Undecodable message at offset {record.offset} on {tp.topic}[{tp.partition}]: {e}")
            if self.policy.dead_letter_topic:
                try:
                    await self._dead_letter(record, str(e))
                except PublishError as publish_error:
                    logger.error(f"Dead-letter publish failed for offset {record.offset}: {publish_error}")
                    await self._redeliver_later(tp, record.offset)
                    return
            await self._commit(tp, record.offset)
            return

        result = None
        for attempt in range(1, self.policy.max_attempts + 1):
            result = await self._invoke(event)
            if result.should_commit:
                logger.debug(f"Event {event.event_id} {result.status.value} at offset {record.offset}")
                await self._commit(tp, record.offset)
                return
            logger.warning(
                f"Handler failed for event {event.event_id} "
                f"(attempt {attempt}/{self.policy.max_attempts}): {result.detail}"
            )
            if attempt < self.policy.max_attempts:
                await self._sleep(self.policy.delay_for(attempt))

        if self.policy.dead_letter_topic:
            try:
                await self._dead_letter(record, result.detail or "handler failed")
            except PublishError as e:
                logger.error(f"Dead-letter publish failed for event {event.event_id}: {e}")
            else:
                await self._commit(tp, record.offset)
                return
        elif self.policy.commit_on_failure:
            logger.error(f"Giving up on event {event.event_id} at offset {record.offset}; committing anyway.")
            await self._commit(tp, record.offset)
            return

        logger.error(
            f"Event {event.event_id} left uncommitted at offset {record.offset}; it will be redelivered."
        )
        await self._redeliver_later(tp, record.offset)

    async def _redeliver_later(self, tp, offset: int):
        self._consumer.seek(tp, offset)
        await self._sleep(self.policy.delay_for(self.policy.max_attempts))

    async def _invoke(self, event: Event) -> HandlerResult:
        try:
            result = await self._handler(event)
        except Exception as e:
            logger.error(f"Error processing event {event.event_id} from topic {self.topic}: {e}", exc_info=True)
            return HandlerResult.failed(e)
        return result or HandlerResult.processed()

    async def _commit(self, tp, offset: int):
        try:
            await self._consumer.commit({tp: offset + 1})
        except KafkaError as e:
            # The message stays uncommitted and will be redelivered
            logger.error(f"Failed to commit offset {offset} on {tp.topic}[{tp.partition}]: {e}")

    async def _dead_letter(self, record, reason: str):
        key = record.key.decode('utf-8', errors='replace') if record.key else None
        headers = [
            ("x-original-topic", record.topic.encode('utf-8')),
            ("x-original-partition", str(record.partition).encode('utf-8')),
            ("x-original-offset", str(record.offset).encode('utf-8')),
            ("x-error", reason.encode('utf-8')),
        ]
        await self._dead_letter_producer.publish_raw(self.policy.dead_letter_topic, key, record.value, headers)
        logger.warning(f"Message at offset {record.offset} routed to dead-letter topic {self.policy.dead_letter_topic}")

    @staticmethod
    async def _close_quietly(consumer):
        try:
            await consumer.stop()
        except BROKER_ERRORS as e:
            logger.error(f"Failed to stop Kafka Consumer: {e}")
