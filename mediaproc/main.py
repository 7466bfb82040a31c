"""mediaproc - FastAPI Application Entry Point.

Wires the processing pipeline behind a thin HTTP adapter:
- POST /process runs one fetch -> transcode -> publish pipeline
- GET /health reports process identity and dependency status
- Request ID tracking, request logging and error sanitization middleware
"""

import os
import socket
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from mediaproc.config import Settings, logger
from mediaproc.core.pipeline import ValidationError, ValidationReason
from mediaproc.core.pipeline.coordinator import PipelineCoordinator
from mediaproc.core.security import get_request_id, mask_sensitive_data
from mediaproc.middleware import (
    ErrorSanitizationMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from mediaproc.routers import processing
from mediaproc.schemas import (
    HealthResponse,
    ProcessResponse,
    PublisherHealth,
    TranscoderHealth,
)
from mediaproc.version import __version__


# -----------------------------------------------------------------------------
# Application Lifespan
# -----------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings: Settings = app.state.settings
    coordinator: PipelineCoordinator = app.state.coordinator

    logger.info("Starting mediaproc v%s", __version__)
    logger.info("Settings: %s", mask_sensitive_data({k: str(v) for k, v in asdict(settings).items()}))

    # Tool availability is checked once here and cached for every request
    status = coordinator.transcoder.probe()
    if coordinator.transcoder.enabled and not status.available:
        logger.error("Transcoder unavailable: %s", status.detail)
    missing = coordinator.publisher.missing_settings()
    if missing:
        logger.error("Object storage not configured, missing: %s", ", ".join(missing))

    yield
    logger.info("Shutting down mediaproc")


# -----------------------------------------------------------------------------
# Application Factory
# -----------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    coordinator: Optional[PipelineCoordinator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or Settings.from_env()
    coordinator = coordinator or PipelineCoordinator.from_settings(settings)

    app = FastAPI(
        title="mediaproc",
        version=__version__,
        lifespan=lifespan,
        # Disable docs in production
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.coordinator = coordinator

    # -------------------------------------------------------------------------
    # Middleware Stack (last added = outermost)
    # -------------------------------------------------------------------------

    # 1. Error sanitization (innermost - sees the route's exceptions first)
    app.add_middleware(ErrorSanitizationMiddleware, debug=settings.debug)

    # 2. Request logging
    app.add_middleware(
        RequestLoggingMiddleware,
        exclude_paths={"/health", "/healthz", "/ready"},
    )

    # 3. Request ID injection
    app.add_middleware(RequestIDMiddleware)

    # 4. Trusted hosts (prevents host header attacks)
    if settings.allowed_hosts and list(settings.allowed_hosts) != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=list(settings.allowed_hosts),
        )

    # 5. CORS (outermost for preflight handling)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=600,  # Cache preflight for 10 minutes
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Malformed bodies get the same envelope as pipeline validation errors."""
        errors = exc.errors()
        summary = "; ".join(
            f"{'.'.join(str(loc) for loc in err.get('loc', []))}: {err.get('msg', 'Invalid value')}"
            for err in errors[:5]  # Limit to 5 errors
        )
        request_id = getattr(request.state, "request_id", None) or get_request_id(request)
        error = ValidationError(
            ValidationReason.MALFORMED_BODY,
            f"Invalid request: {summary}",
            stage="validation",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=400,
            content=ProcessResponse.from_error(error, request_id).to_wire(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with consistent format."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    # -------------------------------------------------------------------------
    # Health Check Endpoints
    # -------------------------------------------------------------------------

    def build_health() -> HealthResponse:
        dependencies = coordinator.dependency_status()
        return HealthResponse(
            status="healthy" if coordinator.ready else "degraded",
            version=__version__,
            timestamp=datetime.now(timezone.utc),
            pid=os.getpid(),
            hostname=socket.gethostname(),
            transcoder=TranscoderHealth(**dependencies["transcoder"]),
            publisher=PublisherHealth(**dependencies["publisher"]),
        )

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    @app.get("/healthz", response_model=HealthResponse, include_in_schema=False)
    async def health_check() -> HealthResponse:
        """Liveness: process identity and whether dependencies are usable."""
        return build_health()

    @app.get("/ready", tags=["Health"])
    async def readiness_check():
        """Readiness: 503 until storage is configured and the transcoder is usable."""
        health = build_health()
        status_code = 200 if health.status == "healthy" else 503
        return JSONResponse(
            status_code=status_code,
            content={"status": "ready" if status_code == 200 else "not_ready"},
        )

    # Include API routers
    app.include_router(processing.router)

    return app


def run() -> None:
    settings = Settings.from_env()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        # Keep the HTTP layer from accepting far more work than the pipeline admits
        limit_concurrency=max(settings.max_concurrent_jobs * 25, 100),
    )


if __name__ == "__main__":
    run()
