"""
Producer adapter: connect/disconnect lifecycle and canonical serialization
around the broker's publish operation.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from core.config import settings
from .errors import BrokerConnectionError, PublishError
from .memory import MEMORY_SCHEME, memory_broker
from .schema import Event
from .state import ConnectionState

logger = logging.getLogger(__name__)

ProducerFactory = Callable[[], Any]

# Transient failures raised by the client while talking to brokers
BROKER_ERRORS = (KafkaError, asyncio.TimeoutError, OSError)


@dataclass(frozen=True)
class PublishResult:
    topic: str
    partition: int
    offset: int


def kafka_producer_factory(
    bootstrap_servers: str,
    client_id: str,
    request_timeout_ms: int,
) -> ProducerFactory:
    """Factory building an AIOKafkaProducer, or an in-memory one for memory:// URLs."""
    def factory():
        if bootstrap_servers.startswith(MEMORY_SCHEME):
            return memory_broker.producer()
        return AIOKafkaProducer(
            bootstrap_servers=bootstrap_servers,
            client_id=client_id,
            acks='all',
            enable_idempotence=True,
            request_timeout_ms=request_timeout_ms,
        )
    return factory


class EventProducer:
    """
    Publishes full events as canonical JSON.

    One instance per process; its connection state is owned here and
    queried through `state` / `is_connected`.
    """

    def __init__(
        self,
        producer_factory: Optional[ProducerFactory] = None,
        connect_retries: Optional[int] = None,
        connect_backoff_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._factory = producer_factory or kafka_producer_factory(
            settings.KAFKA_BOOTSTRAP_SERVERS,
            settings.KAFKA_CLIENT_ID,
            settings.KAFKA_REQUEST_TIMEOUT_MS,
        )
        self._connect_retries = max(
            settings.KAFKA_CONNECT_RETRIES if connect_retries is None else connect_retries, 1
        )
        self._connect_backoff_ms = (
            settings.KAFKA_CONNECT_BACKOFF_MS if connect_backoff_ms is None else connect_backoff_ms
        )
        self._sleep = sleep
        self._producer = None
        self._state = ConnectionState.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def connect(self):
        """
        Start the underlying producer, retrying with exponential backoff.

        Raises:
            BrokerConnectionError: every attempt failed.
        """
        if self._state is ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        delay = self._connect_backoff_ms / 1000
        last_error = None
        for attempt in range(1, self._connect_retries + 1):
            producer = self._factory()
            try:
                await producer.start()
            except BROKER_ERRORS as e:
                last_error = e
                logger.warning(f"Kafka Producer connection attempt {attempt}/{self._connect_retries} failed: {e}")
                await self._close_quietly(producer)
                if attempt < self._connect_retries:
                    await self._sleep(delay)
                    delay *= 2
                continue
            self._producer = producer
            self._state = ConnectionState.CONNECTED
            logger.info("Kafka Producer connected successfully.")
            return

        self._state = ConnectionState.DISCONNECTED
        raise BrokerConnectionError(
            f"Kafka Producer could not connect after {self._connect_retries} attempts"
        ) from last_error

    async def publish(self, topic: str, key: Optional[str], event: Event) -> PublishResult:
        """
        Send the full event to `topic`; `key` pins it to a partition.

        Raises:
            PublishError: not connected, or the broker rejected the write.
        """
        result = await self.publish_raw(topic, key, event.to_wire())
        logger.info(
            f"Event {event.event_id} sent to topic {result.topic} "
            f"(partition {result.partition}, offset {result.offset})"
        )
        return result

    async def publish_raw(
        self,
        topic: str,
        key: Optional[str],
        value: Optional[bytes],
        headers: Optional[Sequence[Tuple[str, bytes]]] = None,
    ) -> PublishResult:
        if not self.is_connected:
            raise PublishError("Kafka Producer is not connected.", topic=topic)

        if key is not None and not isinstance(key, str):
            raise PublishError(f"Message key must be a string, got {type(key).__name__}", topic=topic)
        key_bytes = key.encode('utf-8') if key else None
        try:
            metadata = await self._producer.send_and_wait(
                topic, value=value, key=key_bytes, headers=list(headers) if headers else None
            )
        except BROKER_ERRORS as e:
            logger.error(f"Error sending message to topic {topic}: {e}")
            raise PublishError(f"Failed to publish to topic {topic}: {e}", topic=topic) from e
        return PublishResult(metadata.topic, metadata.partition, metadata.offset)

    async def disconnect(self):
        """Flush in-flight sends and release the connection. Safe to call repeatedly."""
        producer = self._producer
        if producer is None:
            self._state = ConnectionState.DISCONNECTED
            return

        self._producer = None
        self._state = ConnectionState.DISCONNECTED
        try:
            await producer.flush()
        except BROKER_ERRORS as e:
            logger.error(f"Failed to flush Kafka Producer: {e}")
        await self._close_quietly(producer)
        logger.info("Kafka Producer disconnected.")

    @staticmethod
    async def _close_quietly(producer):
        try:
            await producer.stop()
        except BROKER_ERRORS as e:
            logger.error(f"Failed to stop Kafka Producer: {e}")
