import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

import models  # noqa: F401  registers every table on Base.metadata
from core.config import settings
from core.database import initialize_db, db_manager
from core.events.errors import EventSystemError
from core.events.producer import EventProducer
from core.events.store import EventStore
from core.logging_config import setup_logging
# Import exceptions and handlers
from core.exceptions import (
    APIException,
    api_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    sqlalchemy_exception_handler,
    event_system_exception_handler,
    general_exception_handler
)
from routes import (
    cart_router,
    events_router,
    health_router,
    orders_router,
    products_router,
    user_router,
)
from services.events import EventService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: database, then producer. Either failing aborts startup.
    setup_logging(settings.LOG_LEVEL)
    initialize_db(settings.SQLALCHEMY_DATABASE_URI, echo=False)
    await db_manager.connect(settings.DB_CONNECT_RETRIES, settings.DB_CONNECT_BACKOFF_MS)
    await db_manager.create_all()

    producer = EventProducer()
    await producer.connect()
    store = EventStore(db_manager.session_factory)
    app.state.event_producer = producer
    app.state.event_store = store

    try:
        await EventService(producer, store).flush_pending()
    except EventSystemError as e:
        logger.error(f"Failed to republish pending events: {e}")

    logger.info(f"{settings.SERVICE_NAME} started ({settings.ENVIRONMENT}).")
    yield

    # Shutdown
    await producer.disconnect()
    await db_manager.dispose()
    logger.info(f"{settings.SERVICE_NAME} stopped.")


def create_app() -> FastAPI:
    app = FastAPI(
        title="E-commerce Events API",
        description="User, product, cart and order services publishing every change as an event.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(user_router, prefix="/api")
    app.include_router(products_router, prefix="/api")
    app.include_router(cart_router, prefix="/api")
    app.include_router(orders_router, prefix="/api")
    app.include_router(events_router, prefix="/api")
    app.include_router(health_router)

    # Exception handlers
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(EventSystemError, event_system_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.ENVIRONMENT == "local")
