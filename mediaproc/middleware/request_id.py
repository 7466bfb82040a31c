"""
Correlation ID Middleware

Every pipeline run is identified by the HTTP request that submitted it. This
middleware settles that identifier before routing: a well-formed
``X-Request-ID`` from the caller is adopted, anything else is replaced with a
fresh one. The router passes it to ``PipelineCoordinator.submit`` so errors,
logs and the ``requestId`` response field all carry the same value.
"""

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from mediaproc.core.security import REQUEST_ID_HEADER, get_request_id

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Resolves the run correlation ID and echoes it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        supplied = request.headers.get(REQUEST_ID_HEADER)
        request_id = get_request_id(request)
        if supplied and supplied != request_id:
            logger.debug("Ignoring malformed %s header, using %s", REQUEST_ID_HEADER, request_id)

        request.state.request_id = request_id
        request.state.request_id_supplied = supplied == request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
