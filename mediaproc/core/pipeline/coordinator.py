"""
Pipeline coordinator.

Sequences fetch, transcode and publish for one request inside a scoped
workspace. Runs are at-most-once: nothing is retried, the first failure
ends the run, and the workspace is released on every exit path.
"""

import asyncio
import logging
import time
from typing import Optional, Union
from urllib.parse import urlparse

from mediaproc.config import Settings
from mediaproc.core.fetcher import SourceFetcher
from mediaproc.core.pipeline.errors import InternalError, PipelineError
from mediaproc.core.pipeline.models import (
    PipelineResult,
    PipelineState,
    ProcessRequest,
    TransformSpec,
)
from mediaproc.core.pipeline.validators import validate_request
from mediaproc.core.publisher import Publisher, content_type_for
from mediaproc.core.transcoder import Transcoder
from mediaproc.core.utils.ids import generate_request_id
from mediaproc.core.workspace import WorkspaceManager, safe_suffix

logger = logging.getLogger(__name__)

STAGE_VALIDATION = "validation"
STAGE_PREFLIGHT = "preflight"
STAGE_WORKSPACE = "workspace"


class PipelineCoordinator:
    """Runs the fetch -> transcode -> publish pipeline for each request."""

    def __init__(
        self,
        settings: Settings,
        workspaces: WorkspaceManager,
        fetcher: SourceFetcher,
        transcoder: Transcoder,
        publisher: Publisher,
    ):
        self.workspaces = workspaces
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.publisher = publisher
        self.allowed_source_hosts = settings.allowed_source_hosts
        self.max_concurrent_jobs = settings.max_concurrent_jobs
        self._admission = asyncio.Semaphore(settings.max_concurrent_jobs)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineCoordinator":
        return cls(
            settings,
            workspaces=WorkspaceManager(settings.scratch_dir),
            fetcher=SourceFetcher(settings),
            transcoder=Transcoder(settings),
            publisher=Publisher(settings),
        )

    async def submit(
        self,
        source_location: Optional[str],
        output_identity: Optional[str],
        transform: Union[None, str, TransformSpec] = None,
        request_id: Optional[str] = None,
    ) -> PipelineResult:
        """
        Validate and run one request.

        Pipeline failures come back inside the result, never as exceptions.
        Cancellation propagates once the workspace has been released.
        """
        request_id = request_id or generate_request_id()
        result = PipelineResult(request_id=request_id)

        stage = STAGE_VALIDATION
        try:
            request = validate_request(
                request_id,
                source_location,
                output_identity,
                transform,
                allowed_source_hosts=self.allowed_source_hosts,
            )
            stage = STAGE_PREFLIGHT
            self._preflight(request)
        except PipelineError as e:
            result.fail(e.bind(stage, request_id))
            logger.warning(
                "Request %s rejected at %s: %s (%s)",
                request_id,
                stage,
                e.reason_code,
                e.message,
            )
            return result

        async with self._admission:
            await self._execute(request, result)
        return result

    def _preflight(self, request: ProcessRequest) -> None:
        """Checks that need no workspace: storage config, tool, transform."""
        self.publisher.ensure_configured()
        self.transcoder.ensure_available()
        if self.transcoder.enabled:
            self.transcoder.check_transform(request.transform, safe_suffix(request.output_identity, ".mp4"))

    async def _execute(self, request: ProcessRequest, result: PipelineResult) -> None:
        request_id = request.request_id
        started = time.monotonic()
        input_suffix = safe_suffix(urlparse(request.source_location).path, ".bin")
        output_suffix = safe_suffix(request.output_identity, ".mp4")

        try:
            with self.workspaces.session(request_id, input_suffix, output_suffix) as workspace:
                result.advance(PipelineState.FETCHING)
                logger.info("[%s] Fetching %s", request_id, request.source_location)
                await self.fetcher.fetch(request.source_location, workspace.input_path)

                result.advance(PipelineState.TRANSCODING)
                logger.info("[%s] Transcoding into %s", request_id, workspace.output_path.name)
                outcome = await self.transcoder.run(
                    workspace.input_path,
                    workspace.output_path,
                    request.transform,
                )
                if outcome.passthrough:
                    logger.info("[%s] Transcoder disabled, publishing source unchanged", request_id)

                result.advance(PipelineState.PUBLISHING)
                logger.info("[%s] Publishing %s", request_id, request.output_identity)
                result.publish = await self.publisher.publish(
                    workspace.output_path,
                    request.output_identity,
                    content_type_for(request.output_identity),
                )
                result.advance(PipelineState.DONE)
        except PipelineError as e:
            result.fail(e.bind(self._stage_name(result), request_id))
            logger.error(
                "[%s] Failed at %s: %s %s (%s)",
                request_id,
                e.stage,
                e.kind,
                e.reason_code,
                e.message,
            )
            return
        except asyncio.CancelledError:
            logger.warning("[%s] Cancelled during %s", request_id, self._stage_name(result))
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error during %s: %s", request_id, self._stage_name(result), e)
            result.fail(InternalError(f"Unexpected error: {type(e).__name__}").bind(self._stage_name(result), request_id))
            return

        logger.info(
            "[%s] Done in %.2fs: %s",
            request_id,
            time.monotonic() - started,
            result.publish.public_url,
        )

    @staticmethod
    def _stage_name(result: PipelineResult) -> str:
        if result.state is PipelineState.IDLE:
            return STAGE_WORKSPACE
        return result.state.value

    def dependency_status(self) -> dict:
        """Read-only view of whether the pipeline's dependencies are usable."""
        tool = self.transcoder.status
        return {
            "transcoder": {
                "enabled": self.transcoder.enabled,
                "available": tool.available,
                "version": tool.version,
            },
            "publisher": {
                "configured": self.publisher.is_configured,
            },
        }

    @property
    def ready(self) -> bool:
        return self.publisher.is_configured and self.transcoder.usable
