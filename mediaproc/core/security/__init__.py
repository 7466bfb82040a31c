"""
Security helpers for the HTTP layer.

Provides:
- Request ID tracking
- Masking of sensitive values before logging
"""

from mediaproc.core.security.constants import (
    MAX_REQUEST_ID_LENGTH,
    REQUEST_ID_HEADER,
    SENSITIVE_KEYS,
)
from mediaproc.core.security.utils import (
    get_request_id,
    mask_sensitive_data,
)

__all__ = [
    # Constants
    "MAX_REQUEST_ID_LENGTH",
    "REQUEST_ID_HEADER",
    "SENSITIVE_KEYS",
    # Utils
    "get_request_id",
    "mask_sensitive_data",
]
