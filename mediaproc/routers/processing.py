from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from mediaproc.config import logger
from mediaproc.core.pipeline import (
    FetchReason,
    PipelineError,
    PublishReason,
    TranscodeReason,
)
from mediaproc.core.pipeline.coordinator import PipelineCoordinator
from mediaproc.core.security import get_request_id
from mediaproc.schemas import ProcessRequestBody, ProcessResponse

router = APIRouter(tags=["Processing"])

STATUS_BY_KIND = {
    "ValidationError": 400,
    "FetchError": 502,
    "TranscodeError": 422,
    "PublishError": 502,
    "InternalError": 500,
}

STATUS_BY_REASON = {
    FetchReason.TIMEOUT: 504,
    TranscodeReason.TIMEOUT: 504,
    TranscodeReason.TOOL_NOT_AVAILABLE: 503,
    PublishReason.NOT_CONFIGURED: 503,
}


def status_code_for(error: PipelineError) -> int:
    return STATUS_BY_REASON.get(error.reason, STATUS_BY_KIND.get(error.kind, 500))


def get_coordinator(request: Request) -> PipelineCoordinator:
    return request.app.state.coordinator


@router.post("/process", response_model=ProcessResponse, response_model_by_alias=True)
async def process(
    body: ProcessRequestBody,
    request: Request,
    coordinator: PipelineCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    """Fetch, transcode and publish one asset."""
    request_id = getattr(request.state, "request_id", None) or get_request_id(request)

    result = await coordinator.submit(
        body.source_location,
        body.output_identity,
        body.transform_spec(),
        request_id=request_id,
    )

    response = ProcessResponse.from_result(result)
    if result.success:
        return JSONResponse(status_code=200, content=response.to_wire())

    logger.info(
        "Process request %s failed: %s/%s",
        request_id,
        result.error.kind,
        result.error.reason_code,
    )
    return JSONResponse(status_code=status_code_for(result.error), content=response.to_wire())
