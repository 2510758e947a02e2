from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.dashboard.schemas.common import ErrorDetail, ErrorResponse, utc_now

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

_STATUS_CODES = {
    400: "BadRequest",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    429: "TooManyRequests",
}


class ServiceError(Exception):
    """Base class for domain errors raised by services and mapped to HTTP responses."""

    status_code = 500
    code = "InternalError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404
    code = "NotFound"


class ConflictError(ServiceError):
    status_code = 409
    code = "Conflict"


class ValidationFailed(ServiceError):
    status_code = 400
    code = "ValidationError"


# PUBLIC_INTERFACE
def request_id_for(request: Request) -> str:
    """Return (and memoize) the request id, reusing an inbound X-Request-ID when present."""
    rid = getattr(request.state, "request_id", None)
    if rid:
        return rid
    rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = rid
    return rid


# PUBLIC_INTERFACE
def error_response(
    request: Request, status_code: int, message: str, code: str, headers: Optional[dict] = None
) -> JSONResponse:
    """Render the standard error envelope."""
    rid = request_id_for(request)
    body = ErrorResponse(
        error=ErrorDetail(
            message=message,
            code=code,
            request_id=rid,
            timestamp=utc_now(),
            path=request.url.path,
        )
    )
    out_headers = {REQUEST_ID_HEADER: rid}
    out_headers.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True),
        headers=out_headers,
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    code = _STATUS_CODES.get(exc.status_code, "HttpError")
    return error_response(request, exc.status_code, message, code, headers=getattr(exc, "headers", None))


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Service error path=%s: %s", request.url.path, exc.message)
    return error_response(request, exc.status_code, exc.message, exc.code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    message = "; ".join(parts) or "Validation Error"
    logger.warning("Request validation failed path=%s: %s", request.url.path, message)
    return error_response(request, 400, message, "ValidationError")


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error method=%s path=%s", request.method, request.url.path)
    return error_response(request, 500, "Internal Server Error", "InternalError")


# PUBLIC_INTERFACE
def install_error_handlers(app: FastAPI) -> None:
    """Register exception handlers that render every error in the standard envelope."""
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
