"""
Request Context Middleware.

Tags every HTTP request with a request ID and a client source, times it,
and binds both to structlog for the duration of the request. WebSocket
scopes bypass BaseHTTPMiddleware; relay sessions bind their own
session_id instead.

Headers read:
    X-Request-ID   - propagated when present, otherwise a new UUID4
    X-Frontend-ID  - which client is calling (web, tui, cli, internal)

Headers written:
    X-Request-ID, X-Response-Time
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from voicerelay.backend.core.logging import get_logger

logger = get_logger(__name__)

# Subset of logging.VALID_SOURCES a caller may claim for itself
KNOWN_SOURCES = {"web", "tui", "cli", "internal"}


def resolve_source(header: str | None) -> str:
    source = (header or "").lower()
    return source if source in KNOWN_SOURCES else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        source = resolve_source(request.headers.get("X-Frontend-ID"))

        request.state.request_id = request_id
        request.state.source = source

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            source=source,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed with exception",
                extra={"duration_ms": _elapsed_ms(started), "error_type": type(exc).__name__},
            )
            raise
        finally:
            # Context must not leak into the next request on this task.
            structlog.contextvars.clear_contextvars()

        duration_ms = _elapsed_ms(started)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        logger.debug(
            "Request completed",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client_host": request.client.host if request.client else None,
            },
        )
        return response


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
