"""
Request Logging Middleware

One line per request and one per response, tagged with the request ID.
"""

import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from mediaproc.config import logger

DEFAULT_EXCLUDED_PATHS = frozenset({"/health", "/healthz", "/ready"})


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, client, status and duration of each request.

    Requests slower than ``slow_request_ms`` are logged as warnings; a
    transcode-heavy service wants those easy to find.
    """

    def __init__(
        self,
        app: ASGIApp,
        exclude_paths: Optional[set] = None,
        slow_request_ms: float = 60_000,
    ):
        super().__init__(app)
        self.exclude_paths = exclude_paths or set(DEFAULT_EXCLUDED_PATHS)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        started = time.monotonic()
        request_id = getattr(request.state, "request_id", "unknown")

        logger.info(
            "Request: %s %s | client=%s | request_id=%s",
            request.method,
            request.url.path,
            client_ip(request),
            request_id,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed: %s %s | error=%s | duration=%.2fms | request_id=%s",
                request.method,
                request.url.path,
                exc,
                (time.monotonic() - started) * 1000,
                request_id,
            )
            raise

        duration_ms = (time.monotonic() - started) * 1000
        log = logger.warning if duration_ms > self.slow_request_ms else logger.info
        log(
            "Response: %s %s | status=%d | duration=%.2fms | request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response
