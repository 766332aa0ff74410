"""
Per-request log context.

Binds ``request_id`` and ``correlation_id`` with structlog's contextvars for
the duration of a request, so every log line emitted while handling it
(including stdlib ``logging`` calls from services) carries both ids. The ids
are taken from ``X-Request-ID`` / ``X-Correlation-ID`` when the caller sends
them and echoed back on the response.
"""
from __future__ import annotations

import logging
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
CORRELATION_ID_HEADER = "x-correlation-id"

# Polled by uptime checks; kept out of INFO logs
_QUIET_PATHS = frozenset({"/api/health"})


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        # A request without an upstream correlation id starts its own chain
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or request_id

        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(
            request_id=request_id, correlation_id=correlation_id
        ):
            response = await call_next(request)
            logger.log(
                logging.DEBUG if request.url.path in _QUIET_PATHS else logging.INFO,
                "%s %s -> %d",
                request.method,
                _route_template(request),
                response.status_code,
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
