"""
Relay worker process: wires database, producer, consumer and one relay
handler together and owns their startup/shutdown order.
"""
import asyncio
import logging
import signal
from typing import Callable, Optional

from core.config import settings
from core.database import db_manager, initialize_db
from .consumer import EventConsumer, RetryPolicy
from .producer import EventProducer
from .relay import RelayHandler
from .store import EventStore
from .errors import EventSystemError

logger = logging.getLogger(__name__)

RelayFactory = Callable[[EventProducer, EventStore], RelayHandler]


class RelayWorker:
    """
    Startup: database, producer, consumer, pending flush, subscribe.
    Shutdown: consumer stop and disconnect, producer disconnect, database dispose.

    Connection failures propagate from `start()` after each adapter's own retries.
    """

    def __init__(
        self,
        relay_factory: RelayFactory,
        group_id: Optional[str] = None,
        producer: Optional[EventProducer] = None,
        consumer: Optional[EventConsumer] = None,
        database_uri: Optional[str] = None,
    ):
        self._relay_factory = relay_factory
        self._group_id = group_id
        self._database_uri = database_uri or settings.SQLALCHEMY_DATABASE_URI
        self.producer = producer or EventProducer()
        self._consumer = consumer
        self.relay: Optional[RelayHandler] = None
        self.store: Optional[EventStore] = None

    @property
    def consumer(self) -> EventConsumer:
        if self._consumer is None:
            policy = RetryPolicy.from_settings()
            self._consumer = EventConsumer(
                policy=policy,
                dead_letter_producer=self.producer if policy.dead_letter_topic else None,
            )
        return self._consumer

    async def start(self):
        initialize_db(self._database_uri)
        await db_manager.connect(settings.DB_CONNECT_RETRIES, settings.DB_CONNECT_BACKOFF_MS)
        await db_manager.create_all()
        self.store = EventStore(db_manager.session_factory)

        await self.producer.connect()
        self.relay = self._relay_factory(self.producer, self.store)
        group_id = self._group_id or settings.consumer_group_for(self.relay.name)
        await self.consumer.connect(group_id)

        try:
            await self.relay.flush_pending()
        except EventSystemError as e:
            # Left pending; the next startup tries again
            logger.error(f"{self.relay.source}: Failed to flush pending events: {e}")

        self.consumer.subscribe(self.relay.consume_topic, self.relay)
        logger.info(
            f"{self.relay.source} listening on {self.relay.consume_topic} "
            f"(group {group_id}), producing to {self.relay.produce_topic}"
        )

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                signal.signal(sig, lambda signum, frame: self._on_signal(signum))

    def _on_signal(self, sig):
        logger.info(f"Received {signal.Signals(sig).name}, shutting down...")
        self.consumer.request_stop()

    async def run(self):
        await self.consumer.run()

    async def shutdown(self):
        await self.consumer.disconnect()
        await self.producer.disconnect()
        await db_manager.dispose()
        logger.info("Relay worker stopped.")

    async def serve(self):
        """Start, run until a stop signal arrives, then shut down."""
        try:
            await self.start()
            self.install_signal_handlers()
            await self.run()
        finally:
            await self.shutdown()
