"""REST and server-sent-event endpoints for meetings.

Provides endpoints for starting and listing meetings, viewing details,
ingesting live chunks, finalizing, re-exporting, abandoning, and a live
event stream (SSE) for connected clients.

Domain errors raised by the orchestrator are mapped to HTTP responses by
the exception handlers registered in main.py; a chunk for a meeting that
is no longer live is answered with 202 and ``{"ignored": true}``.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from src.meetscribe.config import get_settings
from src.meetscribe.core.monitoring import live_subscribers
from src.meetscribe.events.bus import LiveStream
from src.meetscribe.events.schemas import LiveEvent, SegmentEvent, StatusEvent
from src.meetscribe.meetings.minutes.lexicon import get_lexicon
from src.meetscribe.meetings.schemas import (
    ChunkIngestRequest,
    ExportRecord,
    FinalizeResult,
    IngestResult,
    Meeting,
    MeetingDetails,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class MeetingBody(BaseModel):
    """Request body for starting a live meeting."""

    title: str = Field(default="", max_length=300)
    language: str | None = Field(None, min_length=2, max_length=16)
    participant_ids: list[str]


class ChunkBody(ChunkIngestRequest):
    """Chunk payload with transport-level bounds."""

    text: str | None = Field(None, min_length=1, max_length=10_000)
    audio_base64: str | None = Field(None, min_length=10)
    mime_type: str | None = Field(None, min_length=3, max_length=120)
    speaker_hint_id: str | None = Field(None, min_length=1)
    diarization_label: str | None = Field(None, min_length=1, max_length=80)
    voice_embedding: list[float] | None = Field(None, min_length=1, max_length=4096)
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class AbandonBody(BaseModel):
    reason: str | None = Field(None, max_length=500)


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_orchestrator(request: Request) -> Any:
    """Retrieve MeetingOrchestrator from app.state, 503 if not available."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting orchestrator not initialized",
        )
    return orchestrator


def _get_event_bus(request: Request) -> Any:
    """Retrieve LiveEventBus from app.state, 503 if not available."""
    bus = getattr(request.app.state, "event_bus", None)
    if bus is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Live event bus not initialized",
        )
    return bus


# ── REST Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[Meeting])
async def list_meetings(
    request: Request,
    search: str | None = Query(
        default=None,
        max_length=200,
        description="Case-insensitive title substring",
    ),
) -> list[Meeting]:
    """List meetings, newest first."""
    return await _get_orchestrator(request).list_meetings(search)


@router.post("", response_model=Meeting, status_code=status.HTTP_201_CREATED)
async def create_meeting(body: MeetingBody, request: Request) -> Meeting:
    """Start a live meeting with 1-5 registered participants."""
    orchestrator = _get_orchestrator(request)
    return await orchestrator.create_meeting(
        body.title,
        body.participant_ids,
        language=body.language,
    )


@router.get("/{meeting_id}", response_model=MeetingDetails)
async def get_meeting(meeting_id: str, request: Request) -> MeetingDetails:
    """Meeting with participants, transcript, artifacts and export history."""
    return await _get_orchestrator(request).get_meeting_details(meeting_id)


@router.post(
    "/{meeting_id}/chunks",
    response_model=IngestResult,
    status_code=status.HTTP_201_CREATED,
)
async def ingest_chunk(meeting_id: str, body: ChunkBody, request: Request) -> IngestResult:
    """Ingest one text or audio chunk into a live meeting."""
    return await _get_orchestrator(request).ingest_chunk(meeting_id, body)


@router.post("/{meeting_id}/finalize", response_model=FinalizeResult)
async def finalize_meeting(meeting_id: str, request: Request) -> FinalizeResult:
    """Stop the meeting, generate artifacts and export them."""
    return await _get_orchestrator(request).finalize_meeting(meeting_id)


@router.post("/{meeting_id}/export", response_model=ExportRecord)
async def export_meeting(meeting_id: str, request: Request) -> ExportRecord:
    """Re-run the document export for an already finalized meeting."""
    return await _get_orchestrator(request).export_to_document(meeting_id)


@router.post("/{meeting_id}/abandon", response_model=Meeting)
async def abandon_meeting(
    meeting_id: str,
    request: Request,
    body: AbandonBody | None = None,
) -> Meeting:
    """Mark a live meeting as failed without generating artifacts."""
    reason = body.reason if body else None
    return await _get_orchestrator(request).abandon_meeting(meeting_id, reason)


# ── Live Stream (SSE) ────────────────────────────────────────────────────────


def format_sse(event: LiveEvent) -> str:
    """Encode one event as a server-sent-events ``data:`` frame."""
    return f"data: {json.dumps(event.model_dump(mode='json'), ensure_ascii=False)}\n\n"


async def live_event_source(
    details: MeetingDetails,
    stream: LiveStream,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncGenerator[str, None]:
    """Initial status, replay of existing segments, then live bus events.

    ``stream`` must be opened before ``details`` was read; segment events
    for ids already replayed are skipped so nothing is sent twice.
    """
    meeting = details.meeting
    replayed = {segment.id for segment in details.segments}
    live_subscribers.inc()
    try:
        async with stream:
            yield format_sse(
                StatusEvent(
                    status=meeting.status,
                    message=get_lexicon(meeting.language).stream_connected,
                )
            )
            for segment in details.segments:
                yield format_sse(SegmentEvent(segment=segment))

            async for event in stream:
                if await is_disconnected():
                    break
                if isinstance(event, SegmentEvent) and event.segment.id in replayed:
                    continue
                yield format_sse(event)
    finally:
        live_subscribers.dec()
        logger.debug("live_stream_closed", meeting_id=meeting.id)


@router.get("/{meeting_id}/live")
async def live_events(meeting_id: str, request: Request) -> StreamingResponse:
    """Server-sent events for one meeting, with periodic heartbeats."""
    orchestrator = _get_orchestrator(request)
    bus = _get_event_bus(request)

    stream = bus.stream(meeting_id, heartbeat_seconds=get_settings().LIVE_HEARTBEAT_SECONDS)
    try:
        details = await orchestrator.get_meeting_details(meeting_id)
    except Exception:
        await stream.aclose()
        raise

    logger.info("live_stream_opened", meeting_id=meeting_id)
    return StreamingResponse(
        live_event_source(details, stream, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
