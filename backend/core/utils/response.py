"""
Response utility for consistent API responses
"""
from datetime import date, datetime
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class Response(JSONResponse):
    """
    Success envelope `{success, data, message}` returnable directly from routes.
    """

    def __init__(
        self,
        success: bool = True,
        data: Any = None,
        message: str = "Success",
        status_code: int = status.HTTP_200_OK,
        **kwargs
    ):
        response_data = {
            "success": success,
            "data": self._serialize_data(data),
            "message": message
        }

        super().__init__(content=response_data, status_code=status_code, **kwargs)

    def _serialize_data(self, data: Any) -> Any:
        """Convert Pydantic models and datetimes to JSON-serializable values"""
        if isinstance(data, BaseModel):
            return data.model_dump(mode='json', by_alias=True)
        if isinstance(data, (datetime, date)):
            return data.isoformat()
        if isinstance(data, list):
            return [self._serialize_data(item) for item in data]
        if isinstance(data, dict):
            return {key: self._serialize_data(value) for key, value in data.items()}
        return data

    @staticmethod
    def success(
        data: Any = None,
        message: str = "Success",
        status_code: int = status.HTTP_200_OK,
    ) -> "Response":
        return Response(success=True, data=data, message=message, status_code=status_code)
