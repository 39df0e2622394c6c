from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request
from fastapi.encoders import jsonable_encoder

from portal.schemas.responses import ApiResponse, ErrorDetail, ErrorResponse, ResponseMeta


def _request_id(request: Optional[Request]) -> str:
    if request is not None:
        for attr in ("correlation_id", "request_id"):
            value = getattr(request.state, attr, None)
            if value:
                return str(value)
    return str(uuid4())


def create_api_response(
    data: Any,
    message: str = "Operation successful",
    success: bool = True,
    request: Optional[Request] = None,
    api_version: str = "v1",
) -> Dict[str, Any]:
    """Create a standardized API response as a dictionary.

    Pydantic models (and lists of them) are dumped in JSON mode so UUIDs,
    decimals and datetimes serialise the same way everywhere.
    """
    meta = ResponseMeta(
        timestamp=datetime.now(timezone.utc),
        request_id=_request_id(request),
        api_version=api_version,
    )

    if hasattr(data, "model_dump"):
        payload = data.model_dump(mode="json")
    elif isinstance(data, list):
        payload = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in data]
    else:
        payload = jsonable_encoder(data)

    response = ApiResponse(success=success, message=message, data=payload, meta=meta)
    return response.model_dump(mode="json")


def create_error_detail(
    title: str,
    status: int,
    detail: str,
    request: Optional[Request] = None,
    instance: Optional[str] = None,
) -> ErrorDetail:
    """Create a standardized error detail (RFC 7807)."""
    return ErrorDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance or (request.url.path if request else None),
        request_id=_request_id(request),
        timestamp=datetime.now(timezone.utc),
    )


def create_error_response(
    title: str,
    status: int,
    detail: str,
    request: Optional[Request] = None,
) -> Dict[str, Any]:
    """Create the error envelope rendered by the exception handlers."""
    error = create_error_detail(title=title, status=status, detail=detail, request=request)
    return ErrorResponse(message=detail, error=error).model_dump(mode="json")
