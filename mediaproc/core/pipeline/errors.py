"""
Pipeline exceptions.

Every failure that leaves the pipeline is one of these. Each carries a
machine-readable ``kind`` and ``reason`` plus the stage and request it
happened in, which the coordinator fills in before reporting.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ValidationReason(str, Enum):
    MISSING_SOURCE = "missingSource"
    INVALID_SOURCE = "invalidSource"
    SOURCE_HOST_NOT_ALLOWED = "sourceHostNotAllowed"
    MISSING_OUTPUT_IDENTITY = "missingOutputIdentity"
    INVALID_OUTPUT_IDENTITY = "invalidOutputIdentity"
    INVALID_TRANSFORM = "invalidTransform"
    MALFORMED_BODY = "malformedBody"


class FetchReason(str, Enum):
    UNREACHABLE = "unreachable"
    NON_2XX = "non2xx"
    TIMEOUT = "timeout"
    TRANSFER_ERROR = "transferError"


class TranscodeReason(str, Enum):
    TOOL_NOT_AVAILABLE = "toolNotAvailable"
    INVALID_ARGUMENTS = "invalidArguments"
    NON_ZERO_EXIT = "nonZeroExit"
    TIMEOUT = "timeout"


class PublishReason(str, Enum):
    STORE_UNREACHABLE = "storeUnreachable"
    AUTH_REJECTED = "authRejected"
    NOT_CONFIGURED = "notConfigured"


class InternalReason(str, Enum):
    UNEXPECTED = "unexpected"


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    kind = "PipelineError"

    def __init__(
        self,
        reason: Enum,
        message: str = "",
        *,
        stage: Optional[str] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reason = reason
        self.message = message or reason.value
        self.stage = stage
        self.request_id = request_id
        self.details = details or {}
        super().__init__(self.message)

    @property
    def reason_code(self) -> str:
        return self.reason.value

    def bind(self, stage: str, request_id: str) -> "PipelineError":
        """Attach run context; keeps the stage that was set first."""
        self.stage = self.stage or stage
        self.request_id = self.request_id or request_id
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason_code,
            "stage": self.stage,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(reason={self.reason_code!r}, "
            f"stage={self.stage!r}, request_id={self.request_id!r})"
        )


class ValidationError(PipelineError):
    """Raised when a request is malformed. Always client-caused."""

    kind = "ValidationError"

    def __init__(self, reason: ValidationReason, message: str = "", field: Optional[str] = None, **kwargs):
        self.field = field
        super().__init__(reason, message, **kwargs)


class FetchError(PipelineError):
    """Raised when the source cannot be retrieved."""

    kind = "FetchError"


class TranscodeError(PipelineError):
    """Raised when the external tool cannot produce the output."""

    kind = "TranscodeError"


class PublishError(PipelineError):
    """Raised when the artifact cannot be stored."""

    kind = "PublishError"


class InternalError(PipelineError):
    """Anything unexpected. A defect, not a condition to branch on."""

    kind = "InternalError"

    def __init__(self, message: str = "", **kwargs):
        super().__init__(InternalReason.UNEXPECTED, message, **kwargs)
