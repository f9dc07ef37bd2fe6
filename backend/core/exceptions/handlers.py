import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

from core.events.errors import (
    BrokerConnectionError,
    EventSystemError,
    PersistError,
    PublishError,
    StoreConnectionError,
)
from .api_exceptions import APIException, DatabaseException, ExternalServiceException, ValidationException
from .utils import format_error_response, get_correlation_id

logger = logging.getLogger(__name__)


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle custom API exceptions"""
    content = {
        "success": False,
        "message": exc.message,
        "error_code": exc.error_code,
        "correlation_id": exc.correlation_id,
        "timestamp": exc.timestamp,
    }
    if exc.detail != exc.message:
        content["detail"] = exc.detail
    if isinstance(exc, ValidationException) and exc.errors:
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} [{exc.correlation_id}] on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            message=str(exc.detail),
            status_code=exc.status_code,
            error_code=f"HTTP_{exc.status_code}",
        )
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/path validation failures are client errors (400)"""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"][1:]) or str(error["loc"][0])  # Skip 'body' prefix
        errors[field] = error["msg"]

    return JSONResponse(
        status_code=400,
        content=format_error_response(
            message="Validation failed",
            status_code=400,
            error_code="VALIDATION_ERROR",
            errors=errors,
        )
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    correlation_id = get_correlation_id()
    logger.error(f"Database error [{correlation_id}]: {exc}", exc_info=exc)

    return JSONResponse(
        status_code=500,
        content=format_error_response(
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            correlation_id=correlation_id,
        )
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    correlation_id = get_correlation_id()
    logger.error(f"Unexpected error [{correlation_id}]: {exc}", exc_info=exc)

    return JSONResponse(
        status_code=500,
        content=format_error_response(
            message="An unexpected error occurred",
            error_code="INTERNAL_ERROR",
            correlation_id=correlation_id,
        )
    )


async def event_system_exception_handler(request: Request, exc: EventSystemError) -> JSONResponse:
    """Broker failures surface as 502, store failures as 500"""
    if isinstance(exc, (PublishError, BrokerConnectionError)):
        api_exc = ExternalServiceException("Failed to publish event", service="kafka")
    elif isinstance(exc, (PersistError, StoreConnectionError)):
        api_exc = DatabaseException("Failed to persist event")
    else:
        api_exc = APIException(status_code=500, message="An unexpected error occurred", error_code="INTERNAL_ERROR")

    logger.error(f"Event system error [{api_exc.correlation_id}] on {request.url.path}: {exc}")
    return await api_exception_handler(request, api_exc)
