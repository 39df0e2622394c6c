"""Common API response envelope models."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    timestamp: datetime
    request_id: str
    api_version: str = "v1"


class ApiResponse(BaseModel):
    """Envelope for successful responses."""

    success: bool = True
    message: str
    data: Any = None
    meta: ResponseMeta


class ErrorDetail(BaseModel):
    """Problem details (RFC 7807) carried in error responses."""

    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    request_id: str
    timestamp: datetime


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: ErrorDetail = Field(..., description="Problem details")
