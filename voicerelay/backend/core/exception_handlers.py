"""
HTTP Exception Handlers.

Turn ApplicationError subclasses and unexpected exceptions raised by the
HTTP routes into the ErrorResponse envelope. Relay sessions never reach
these handlers; they report failures to the client as an ``error`` event.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from voicerelay.backend.core.exceptions import (
    ApplicationError,
    ExternalServiceError,
    ServiceUnavailableError,
    ValidationError,
)
from voicerelay.backend.core.logging import get_logger
from voicerelay.backend.schemas.base import ErrorDetail, ErrorResponse, ResponseMetadata

logger = get_logger(__name__)

# Looked up along the exception's MRO, so subclasses inherit their parent's status.
EXCEPTION_STATUS_MAP: dict[type[ApplicationError], int] = {
    ValidationError: 400,
    ExternalServiceError: 502,
    ServiceUnavailableError: 503,
}


def status_for(exc: ApplicationError) -> int:
    for cls in type(exc).__mro__:
        if cls in EXCEPTION_STATUS_MAP:
            return EXCEPTION_STATUS_MAP[cls]
    return 500


def _get_request_id(request: Request) -> str | None:
    """Request ID bound by the middleware, else the raw header."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id
    return request.headers.get("x-request-id")


def _error_response(
    request_id: str | None,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, details=details or None),
        metadata=ResponseMetadata(request_id=request_id),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def application_error_handler(request: Request, exc: ApplicationError) -> JSONResponse:
    """
    Map an ApplicationError to its status code and envelope.

    Only dict ``details`` are exposed. String details (upstream handshake
    errors, for instance) stay in the log.
    """
    status_code = status_for(exc)
    request_id = _get_request_id(request)
    details = getattr(exc, "details", None)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={
            "code": exc.code,
            "message": exc.message,
            "status": status_code,
            "path": request.url.path,
            "request_id": request_id,
            "details": details,
        },
    )

    return _error_response(
        request_id,
        status_code,
        exc.code,
        exc.message,
        details if isinstance(details, dict) else None,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500. The exception is logged with its traceback, never returned."""
    request_id = _get_request_id(request)

    logger.exception(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "request_id": request_id,
        },
    )

    return _error_response(request_id, 500, "SYS_INTERNAL_ERROR", "An unexpected error occurred")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApplicationError, application_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
