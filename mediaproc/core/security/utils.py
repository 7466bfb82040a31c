"""
Security Utilities

Request ID tracking and masking of sensitive values for logging.
"""

import re
from typing import Any, Dict

from fastapi import Request

from mediaproc.core.security.constants import (
    MAX_REQUEST_ID_LENGTH,
    REQUEST_ID_HEADER,
    SENSITIVE_KEYS,
)
from mediaproc.core.utils.ids import generate_request_id

_REQUEST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def get_request_id(request: Request) -> str:
    """Get or generate request ID from request."""
    request_id = request.headers.get(REQUEST_ID_HEADER)
    if request_id and len(request_id) <= MAX_REQUEST_ID_LENGTH and _REQUEST_ID_PATTERN.match(request_id):
        return request_id
    return generate_request_id()


def mask_sensitive_data(
    data: Dict[str, Any],
    sensitive_keys: frozenset = SENSITIVE_KEYS,
) -> Dict[str, Any]:
    """
    Mask sensitive data in dictionaries for safe logging.
    """
    masked = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(s in key_lower for s in sensitive_keys):
            masked[key] = "[REDACTED]"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value, sensitive_keys)
        else:
            masked[key] = value
    return masked
