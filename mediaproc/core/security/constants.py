"""
Security Constants

Centralized constants for security module.
"""

# Request ID header
REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64

# Keys never written to logs
SENSITIVE_KEYS = frozenset({"token", "password", "secret", "key", "authorization", "credential"})
