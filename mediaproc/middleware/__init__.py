"""
Middleware stack for mediaproc.

Provides:
- Request ID injection
- Request/response logging
- Error sanitization
"""

from mediaproc.middleware.request_id import RequestIDMiddleware
from mediaproc.middleware.logging import RequestLoggingMiddleware
from mediaproc.middleware.error_sanitization import ErrorSanitizationMiddleware

__all__ = [
    "RequestIDMiddleware",
    "RequestLoggingMiddleware",
    "ErrorSanitizationMiddleware",
]
