"""
Media processing pipeline package.

Module Structure:
- errors.py: Exception hierarchy and reason codes
- models.py: Data structures (ProcessRequest, Workspace, PipelineResult, ...)
- validators.py: Request validation and key normalization
- coordinator.py: Pipeline orchestration (import from the module directly;
  it depends on the fetcher, transcoder and publisher, which import this package)
"""

from mediaproc.core.pipeline.errors import (
    FetchError,
    FetchReason,
    InternalError,
    PipelineError,
    PublishError,
    PublishReason,
    TranscodeError,
    TranscodeReason,
    ValidationError,
    ValidationReason,
)
from mediaproc.core.pipeline.models import (
    PipelineResult,
    PipelineState,
    ProcessRequest,
    PublishResult,
    TranscodeOutcome,
    TransformSpec,
    Workspace,
)
from mediaproc.core.pipeline.validators import (
    normalize_output_identity,
    validate_request,
    validate_source_location,
    validate_transform,
)

__all__ = [
    # Errors
    "FetchError",
    "FetchReason",
    "InternalError",
    "PipelineError",
    "PublishError",
    "PublishReason",
    "TranscodeError",
    "TranscodeReason",
    "ValidationError",
    "ValidationReason",
    # Data structures
    "PipelineResult",
    "PipelineState",
    "ProcessRequest",
    "PublishResult",
    "TranscodeOutcome",
    "TransformSpec",
    "Workspace",
    # Validation
    "normalize_output_identity",
    "validate_request",
    "validate_source_location",
    "validate_transform",
]
