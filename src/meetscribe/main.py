"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
domain exception handlers, lifespan wiring of the meeting services, and the
v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response

from src.meetscribe.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetscribe.api.v1 import health
from src.meetscribe.api.v1.router import router as v1_router
from src.meetscribe.config import Settings, get_settings
from src.meetscribe.core.database import close_db, get_session, init_db
from src.meetscribe.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetscribe.events.bus import LiveEventBus
from src.meetscribe.meetings.errors import (
    InvalidStateError,
    MeetingError,
    MeetingNotLiveError,
    NotFoundError,
    ValidationError,
)
from src.meetscribe.meetings.memory import InMemoryMeetingRepository
from src.meetscribe.meetings.minutes.exporter import GoogleDocsExporter
from src.meetscribe.meetings.orchestrator import MeetingOrchestrator
from src.meetscribe.meetings.repository import MeetingRepository
from src.meetscribe.meetings.transcription import SpeechToTextService

logger = structlog.get_logger(__name__)


def build_services(settings: Settings) -> dict:
    """Construct the meeting services from settings.

    Returns:
        Dict of app.state attribute name -> service instance.
    """
    if settings.DATABASE_URL:
        repository = MeetingRepository(session_factory=get_session)
    else:
        repository = InMemoryMeetingRepository()

    transcriber = SpeechToTextService(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_STT_MODEL,
        timeout=settings.STT_TIMEOUT_SECONDS,
        use_mock=settings.USE_MOCK_STT,
    )
    exporter = GoogleDocsExporter(
        service_account_file=(
            None if settings.USE_MOCK_DOCUMENT_EXPORT else settings.get_service_account_path()
        ),
        drive_folder_id=settings.GOOGLE_DRIVE_FOLDER_ID,
        export_dir=settings.EXPORT_DIR,
        use_mock=settings.USE_MOCK_DOCUMENT_EXPORT,
    )
    event_bus = LiveEventBus(queue_size=settings.EVENT_QUEUE_SIZE)
    orchestrator = MeetingOrchestrator(
        repository=repository,
        transcriber=transcriber,
        exporter=exporter,
        event_bus=event_bus,
        default_language=settings.DEFAULT_LANGUAGE,
        max_export_attempts=settings.EXPORT_MAX_ATTEMPTS,
        export_backoff_ms=settings.EXPORT_BACKOFF_BASE_MS,
        low_confidence_threshold=settings.LOW_CONFIDENCE_THRESHOLD,
    )
    return {
        "meeting_repository": repository,
        "transcriber": transcriber,
        "exporter": exporter,
        "event_bus": event_bus,
        "orchestrator": orchestrator,
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    settings = get_settings()
    configure_structlog()

    if settings.DATABASE_URL:
        await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    for name, service in build_services(settings).items():
        setattr(app.state, name, service)

    logger.info(
        "meetscribe_started",
        storage="database" if settings.DATABASE_URL else "memory",
        stt_mock=settings.USE_MOCK_STT or not settings.OPENAI_API_KEY,
        export_mock=app.state.exporter.mock_mode,
    )

    yield

    if settings.DATABASE_URL:
        await close_db()


# ── Exception Handlers ──────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Map meeting domain errors to HTTP responses."""

    @app.exception_handler(MeetingNotLiveError)
    async def meeting_not_live(request: Request, exc: MeetingNotLiveError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"ignored": True, "reason": "meeting-not-live"},
        )

    @app.exception_handler(MeetingError)
    async def meeting_error(request: Request, exc: MeetingError) -> JSONResponse:
        if isinstance(exc, ValidationError):
            status_code = status.HTTP_400_BAD_REQUEST
        elif isinstance(exc, NotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, InvalidStateError):
            status_code = status.HTTP_409_CONFLICT
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_error",
            method=request.method,
            path=request.url.path,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meetscribe API",
        version="0.1.0",
        description="Live meeting transcription, speaker attribution and minutes export",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("src.meetscribe.main:app", host="0.0.0.0", port=8000)
