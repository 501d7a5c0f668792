from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id (echoed as X-Request-ID) and logs one line per request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
            session_id=request.headers.get("x-session-id"),
        )
        request.state.request_id = request_id

        t0 = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception("http_request_failed", elapsed_ms=_elapsed_ms(t0), error=str(e))
            raise

        log.info("http_request", status_code=response.status_code, elapsed_ms=_elapsed_ms(t0))
        response.headers["X-Request-ID"] = request_id
        return response


def _elapsed_ms(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000.0, 2)
