import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request id to every log line emitted while a command is handled."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()

        # Reuse the caller's id so a host shell can correlate its own logs
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
        )
        request.state.request_id = request_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception(
                "http_request_failed",
                elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(e),
            )
            raise

        log.info(
            "http_request",
            status_code=response.status_code,
            elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
