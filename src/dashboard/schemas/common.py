from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and accepts snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str = Field(..., description="High-level health status string (e.g., 'ok').")
    message: str = Field(..., description="Human-readable status message.")
    timestamp: datetime = Field(..., description="UTC timestamp at time of response.")


class ErrorDetail(CamelModel):
    """Body of the standard error envelope."""

    message: str = Field(..., description="Human-readable error details.")
    code: str = Field(..., description="Machine-readable error code (e.g. 'NotFound').")
    request_id: str = Field(..., description="Request id echoed in the X-Request-ID header.")
    timestamp: datetime = Field(..., description="UTC timestamp when the error was produced.")
    path: str = Field(..., description="Request path that produced the error.")


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class DataResponse(BaseModel, Generic[T]):
    """Success envelope wrapping a payload."""

    success: bool = Field(True, description="Always true for successful responses.")
    data: T
    message: Optional[str] = Field(default=None, description="Optional human-readable message.")


class MessageResponse(BaseModel):
    """Success envelope without a payload."""

    success: bool = True
    message: str


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def ok(data: T, message: Optional[str] = None) -> DataResponse[T]:
    """Wrap a payload in the success envelope."""
    return DataResponse(data=data, message=message)
