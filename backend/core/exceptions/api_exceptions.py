from fastapi import HTTPException
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .utils import get_correlation_id


class APIException(HTTPException):
    """Custom API exception with enhanced error details"""

    def __init__(
        self,
        status_code: int,
        message: str = "An unexpected API error occurred",
        detail: Optional[str] = None,
        error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **kwargs
    ):
        self.message = message
        self.detail = detail or message
        self.error_code = error_code or f"ERR_{status_code}"
        self.correlation_id = correlation_id or get_correlation_id()
        self.timestamp = datetime.now(timezone.utc).isoformat()

        super().__init__(status_code=status_code, detail=self.detail, **kwargs)


class ValidationException(APIException):
    """Exception for invalid input, raised before any event is produced"""

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, Any]] = None):
        self.errors = errors or {}
        super().__init__(
            status_code=400,
            message=message,
            error_code="VALIDATION_ERROR"
        )


class NotFoundException(APIException):
    """Exception for resource not found errors"""

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None):
        self.resource = resource
        super().__init__(
            status_code=404,
            message=message,
            error_code="NOT_FOUND"
        )


class DatabaseException(APIException):
    """Exception for database errors"""

    def __init__(self, message: str = "Database error occurred"):
        super().__init__(
            status_code=500,
            message=message,
            error_code="DATABASE_ERROR"
        )


class ExternalServiceException(APIException):
    """Exception for message broker and other upstream failures"""

    def __init__(self, message: str = "External service error", service: Optional[str] = None):
        self.service = service
        super().__init__(
            status_code=502,
            message=message,
            error_code="EXTERNAL_SERVICE_ERROR"
        )
