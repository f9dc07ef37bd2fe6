from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy import text, Column, DateTime, Integer, func
from sqlalchemy.exc import SQLAlchemyError
import asyncio
import logging
from typing import AsyncGenerator, Optional

from core.events.errors import StoreConnectionError

logger = logging.getLogger(__name__)

Base = declarative_base()
CHAR_LENGTH = 255


class BaseModel(Base):
    """Base model with integer surrogate key and timestamps"""
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class DatabaseManager:
    """Owns the process-wide engine and session factory."""

    def __init__(self):
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    @property
    def is_initialized(self) -> bool:
        return self.engine is not None and self.session_factory is not None

    def initialize(self, database_uri: str, echo: bool = False):
        """Initializes the database engine and session factory."""
        if self.is_initialized:  # Prevent re-initialization
            return

        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if not database_uri.startswith("sqlite"):
            engine_kwargs.update(pool_recycle=3600, pool_size=10, max_overflow=20, pool_timeout=30)

        engine = create_async_engine(database_uri, **engine_kwargs)
        self.set_engine_and_session_factory(
            engine,
            async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False),
        )

    def set_engine_and_session_factory(self, engine, session_factory):
        self.engine = engine
        self.session_factory = session_factory

    async def connect(self, retries: int = 5, backoff_ms: int = 500):
        """
        Verify the store is reachable, retrying with exponential backoff.

        Raises:
            StoreConnectionError: the store never answered.
        """
        if not self.is_initialized:
            raise StoreConnectionError("Database not initialized.")

        delay = backoff_ms / 1000
        last_error = None
        for attempt in range(1, max(retries, 1) + 1):
            try:
                async with self.engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                logger.info("Database connection established.")
                return
            except (SQLAlchemyError, OSError) as e:
                last_error = e
                logger.warning(f"Database connection attempt {attempt}/{retries} failed: {e}")
                if attempt < retries:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise StoreConnectionError(f"Database unreachable after {retries} attempts") from last_error

    async def create_all(self):
        """Create tables for every imported model."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> dict:
        if not self.is_initialized:
            return {"status": "uninitialized"}
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy"}
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e)}

    async def dispose(self):
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed.")
        self.engine = None
        self.session_factory = None


# Global database manager instance
db_manager = DatabaseManager()


def initialize_db(database_uri: str, echo: bool = False):
    """Initializes the database manager with engine and session factory."""
    db_manager.initialize(database_uri, echo)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session bound to the global factory."""
    if not db_manager.is_initialized:
        raise StoreConnectionError("Database not initialized.")
    async with db_manager.session_factory() as session:
        yield session
