from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ApiResponse(BaseModel):
    """Envelope wrapping every response body."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[Any] = None
    timestamp: datetime = Field(default_factory=_now)


def ok(data: Any = None, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)


def fail(message: str, error: Any = None) -> ApiResponse:
    return ApiResponse(success=False, message=message, error=error)
