"""
Data structures for the processing pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from mediaproc.core.pipeline.errors import PipelineError


@dataclass(frozen=True)
class TransformSpec:
    """A named style or an explicit filter expression, plus extra output options."""

    style: Optional[str] = None
    filter: Optional[str] = None
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProcessRequest:
    """A validated request. Only built by ``validate_request``."""

    request_id: str
    source_location: str
    output_identity: str
    transform: TransformSpec = field(default_factory=TransformSpec)


@dataclass(frozen=True)
class Workspace:
    """Scratch files owned by exactly one pipeline run."""

    root: Path
    input_path: Path
    output_path: Path


@dataclass
class TranscodeOutcome:
    exit_status: int
    diagnostic_output: str = ""
    passthrough: bool = False
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class PublishResult:
    storage_key: str
    public_url: str
    content_type: str = "video/mp4"
    size_bytes: int = 0


class PipelineState(str, Enum):
    """States of a single pipeline run."""

    IDLE = "idle"
    FETCHING = "fetching"
    TRANSCODING = "transcoding"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Outcome of one pipeline run, success or failure."""

    request_id: str
    state: PipelineState = PipelineState.IDLE
    transitions: List[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    publish: Optional[PublishResult] = None
    error: Optional[PipelineError] = None

    @property
    def success(self) -> bool:
        return self.state is PipelineState.DONE and self.publish is not None

    def advance(self, state: PipelineState) -> None:
        self.state = state
        self.transitions.append(state)

    def fail(self, error: PipelineError) -> None:
        self.error = error
        self.advance(PipelineState.FAILED)
