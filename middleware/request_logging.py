"""
Request logging middleware. Logs method, path, status, duration only.
Never logs headers, body, or query params: the sync trigger's Authorization
header carries either a user token or the shared sync secret.
"""
import logging
import os
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = float(os.getenv("SLOW_REQUEST_MS", "3000"))

# Long-lived SSE responses; their duration is meaningless.
_STREAM_PATH_SUFFIXES = ("/stream",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request: method, path (no query), status_code, duration_ms."""

    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method
        path = request.scope.get("path", "")
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        status = response.status_code

        if path.endswith(_STREAM_PATH_SUFFIXES):
            logger.info("stream_opened method=%s path=%s status=%s", method, path, status)
            return response

        if status >= 500:
            level = logging.ERROR
        elif status >= 400 or duration_ms >= SLOW_REQUEST_MS:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "request_finished method=%s path=%s status=%s duration_ms=%.1f",
            method, path, status, duration_ms,
        )
        return response
