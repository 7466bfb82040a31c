"""
Pydantic models for request/response validation.

Field names are snake_case in Python and camelCase on the wire.
Required-ness of ``sourceLocation``/``outputIdentity`` is checked by the
pipeline itself so that missing fields get the standard error envelope.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from mediaproc.core.pipeline import PipelineError, PipelineResult, TransformSpec


# -----------------------------------------------------------------------------
# Base Models
# -----------------------------------------------------------------------------

class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
    )


# -----------------------------------------------------------------------------
# Processing
# -----------------------------------------------------------------------------

class TransformBody(BaseSchema):
    """Explicit transform: a named style or a filter expression, plus output options."""
    style: Optional[str] = Field(default=None, max_length=64, description="Named style preset")
    filter: Optional[str] = Field(default=None, max_length=4096, description="Explicit -vf filter expression")
    args: List[str] = Field(default_factory=list, max_length=32, description="Extra allow-listed output options")

    def to_spec(self) -> TransformSpec:
        return TransformSpec(
            style=self.style or None,
            filter=self.filter or None,
            args=tuple(self.args),
        )


class ProcessRequestBody(BaseSchema):
    """Inbound processing request."""
    source_location: Optional[str] = Field(default=None, alias="sourceLocation", description="Source media URL")
    output_identity: Optional[str] = Field(default=None, alias="outputIdentity", description="Storage key for the result")
    transform: Optional[Union[str, TransformBody]] = Field(default=None, description="Style name or transform object")

    def transform_spec(self) -> Union[None, str, TransformSpec]:
        if isinstance(self.transform, TransformBody):
            return self.transform.to_spec()
        return self.transform


class ErrorBody(BaseSchema):
    kind: str
    reason: str
    stage: Optional[str] = None
    message: str = ""


class ProcessResponse(BaseSchema):
    """Uniform response for every processing outcome."""
    success: bool
    public_url: Optional[str] = Field(default=None, alias="publicURL")
    storage_key: Optional[str] = Field(default=None, alias="storageKey")
    error: Optional[ErrorBody] = None
    request_id: str = Field(..., alias="requestId")

    @classmethod
    def from_result(cls, result: PipelineResult) -> "ProcessResponse":
        if result.success:
            return cls(
                success=True,
                public_url=result.publish.public_url,
                storage_key=result.publish.storage_key,
                request_id=result.request_id,
            )
        return cls.from_error(result.error, result.request_id)

    @classmethod
    def from_error(cls, error: PipelineError, request_id: str) -> "ProcessResponse":
        return cls(
            success=False,
            error=ErrorBody(**error.to_dict()),
            request_id=request_id,
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------

class TranscoderHealth(BaseSchema):
    enabled: bool
    available: bool
    version: Optional[str] = None


class PublisherHealth(BaseSchema):
    configured: bool


class HealthResponse(BaseSchema):
    """Health check response."""
    status: str = Field(..., description="healthy or degraded")
    version: str
    timestamp: datetime
    pid: int
    hostname: str
    transcoder: TranscoderHealth
    publisher: PublisherHealth
