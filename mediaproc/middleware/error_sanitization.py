"""
Error Sanitization Middleware

Turns unhandled exceptions into the standard error envelope so that no
stack trace or internal detail reaches the caller.
"""

from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from mediaproc.config import logger
from mediaproc.core.pipeline import InternalError
from mediaproc.core.security import REQUEST_ID_HEADER, get_request_id
from mediaproc.schemas import ProcessResponse


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Sanitizes error responses to prevent information leakage.

    - Logs full errors server-side
    - Answers with an InternalError envelope carrying the request ID
    - Re-raises in debug mode so the traceback stays visible
    """

    def __init__(self, app: ASGIApp, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", None) or get_request_id(request)
            logger.exception("Unhandled exception in request %s: %s", request_id, exc)

            if self.debug:
                raise

            error = InternalError("Internal server error", request_id=request_id)
            return JSONResponse(
                status_code=500,
                content=ProcessResponse.from_error(error, request_id).to_wire(),
                headers={REQUEST_ID_HEADER: request_id},
            )
