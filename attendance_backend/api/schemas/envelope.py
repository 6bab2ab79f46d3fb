# attendance_backend/api/schemas/envelope.py
from typing import Generic, Optional, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Uniform wrapper around every JSON response of the attendance API."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None


def success_response(data) -> dict:
    return {"success": True, "data": data, "error": None}


def error_response(message: str) -> dict:
    return {"success": False, "data": None, "error": message}
