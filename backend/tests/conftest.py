import asyncio
import os
import sys
from typing import Callable

import pytest
import pytest_asyncio

# Add the backend directory to the Python path
# This is necessary for pytest to find the 'main' module and other packages
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

# Settings are read at import time; keep tests off real infrastructure
os.environ.setdefault("KAFKA_BOOTSTRAP_SERVERS", "memory://")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("KAFKA_CONNECT_RETRIES", "1")
os.environ.setdefault("KAFKA_CONNECT_BACKOFF_MS", "0")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import models  # noqa: F401
from core.database import Base
from core.events.consumer import EventConsumer, RetryPolicy
from core.events.memory import InMemoryBroker
from core.events.producer import EventProducer
from core.events.schema import Event
from core.events.store import EventStore


async def no_sleep(_seconds):
    await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01):
    """Poll until `predicate()` holds; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met before timeout")
        await asyncio.sleep(interval)


def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


async def create_session_factory(database_url: str):
    # One connection per session so concurrent appends commit independently
    engine = create_async_engine(database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def make_producer(broker: InMemoryBroker) -> EventProducer:
    return EventProducer(producer_factory=broker.producer, connect_retries=1, connect_backoff_ms=0)


def make_consumer(broker: InMemoryBroker, policy: RetryPolicy = None, **kwargs) -> EventConsumer:
    def factory(group_id):
        return broker.consumer(group_id=group_id, auto_offset_reset="earliest")
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("poll_timeout_ms", 20)
    return EventConsumer(
        consumer_factory=factory,
        policy=policy or RetryPolicy(max_attempts=2, backoff_ms=1, max_backoff_ms=5),
        connect_retries=1,
        connect_backoff_ms=0,
        **kwargs,
    )


def registration_event(email="ana@example.com", name="Ana", user_id="usr_1a2b3c4d", **overrides) -> Event:
    payload = {"name": name, "lastName": "García", "email": email, "phone": None}
    snapshot = {"userId": user_id, "status": "REGISTERED_PENDING_WELCOME"}
    payload.update(overrides.pop("payload", {}))
    snapshot.update(overrides.pop("snapshot", {}))
    return Event.create(
        source="UserService",
        topic="user-registration",
        payload=payload,
        snapshot=snapshot,
        **overrides,
    )


def notification_event(to="ana@example.com", subject="¡Bienvenido a nuestra plataforma!",
                       content="Hola Ana", **overrides) -> Event:
    snapshot = {"status": "WELCOME_NOTIFICATION_QUEUED", "targetUserId": "usr_1a2b3c4d"}
    snapshot.update(overrides.pop("snapshot", {}))
    return Event.create(
        source="WelcomeService",
        topic="notification-topic",
        payload={"to": to, "subject": subject, "content": content},
        snapshot=snapshot,
        **overrides,
    )


def decoded(broker: InMemoryBroker, topic: str):
    """Events published on a topic, in partition/offset order."""
    return [Event.from_wire(record.value) for record in broker.records(topic)]


@pytest.fixture
def broker():
    return InMemoryBroker(partitions=3)


@pytest_asyncio.fixture
async def event_producer(broker):
    producer = make_producer(broker)
    await producer.connect()
    yield producer
    await producer.disconnect()


@pytest_asyncio.fixture
async def database(tmp_path):
    """(engine, session factory) on a fresh SQLite file with every table created."""
    engine, factory = await create_session_factory(sqlite_url(tmp_path / "events.db"))
    yield engine, factory
    await engine.dispose()


@pytest.fixture
def session_factory(database):
    return database[1]


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_store(session_factory):
    return EventStore(session_factory)


@pytest_asyncio.fixture
async def app(database, event_producer, event_store):
    """HTTP app wired to the test broker and database; lifespan is not run."""
    from main import create_app
    from core.database import db_manager

    engine, factory = database
    application = create_app()
    application.state.event_producer = event_producer
    application.state.event_store = event_store
    db_manager.set_engine_and_session_factory(engine, factory)
    yield application
    db_manager.set_engine_and_session_factory(None, None)


@pytest_asyncio.fixture
async def client(app):
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
