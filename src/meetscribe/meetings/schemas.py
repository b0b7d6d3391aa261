"""Pydantic v2 schemas for the meeting domain.

Defines the data contracts for participants, meetings, transcript segments,
derived artifacts (summary, decisions, action items, open questions, risks)
and export records. The orchestrator, repositories, extractor, exporter and
API layer all import from this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting.

    live -> processing -> completed; failed is reachable from any
    non-terminal status when the lifecycle cannot continue.
    """

    LIVE = "live"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportStatus(str, Enum):
    """Status of one export operation (retries mutate the same record)."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# ── Participants ─────────────────────────────────────────────────────────────


class VoiceProfile(BaseModel):
    """Precomputed voice embedding and free-text notes for a participant."""

    embedding: list[float] | None = None
    notes: str | None = None


class Participant(BaseModel):
    """A registered person who can be attributed transcript segments."""

    id: str = Field(default_factory=new_id)
    name: str
    voice_profile: VoiceProfile | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ParticipantCreate(BaseModel):
    """Request schema for registering a participant."""

    name: str = Field(max_length=120)
    voice_profile: VoiceProfile | None = None


# ── Meetings ─────────────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """Meeting entity with lifecycle metadata."""

    id: str = Field(default_factory=new_id)
    title: str
    language: str = "sv"
    status: MeetingStatus = MeetingStatus.LIVE
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    doc_url: str | None = None
    error_message: str | None = None
    participant_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MeetingPatch(BaseModel):
    """Auxiliary fields written atomically together with a status change.

    Only explicitly set fields are applied, so ``error_message=None`` clears
    a stored error while an omitted field is left untouched.
    """

    ended_at: datetime | None = None
    doc_url: str | None = None
    error_message: str | None = None


# ── Transcript ───────────────────────────────────────────────────────────────


class TranscriptSegment(BaseModel):
    """One attributed utterance in a meeting transcript. Immutable."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    participant_id: str | None = None
    speaker_label: str
    diarization_label: str | None = None
    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp_ms: int = Field(ge=0, description="Elapsed ms since meeting start")
    is_overlapping: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class SegmentCreate(BaseModel):
    """Repository input for appending a segment."""

    meeting_id: str
    participant_id: str | None = None
    speaker_label: str
    diarization_label: str | None = None
    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    timestamp_ms: int = Field(ge=0)
    is_overlapping: bool = False


class ChunkIngestRequest(BaseModel):
    """One incoming chunk: either typed text or a base64 audio blob."""

    text: str | None = Field(None, max_length=10_000)
    audio_base64: str | None = None
    mime_type: str | None = Field(None, max_length=120)
    speaker_hint_id: str | None = None
    diarization_label: str | None = Field(None, max_length=80)
    voice_embedding: list[float] | None = Field(None, max_length=4096)
    confidence: float | None = None
    is_overlapping: bool | None = None


# ── Artifacts ────────────────────────────────────────────────────────────────


class ExtractedItem(BaseModel):
    """A transcript-derived note with back-references to its segments."""

    id: str
    text: str
    references: list[str] = Field(default_factory=list)


class Decision(ExtractedItem):
    """A decision stated during the meeting."""


class ActionItem(ExtractedItem):
    """A follow-up task, optionally with owner and due date."""

    owner: str | None = None
    due_date: str | None = None


class OpenQuestion(ExtractedItem):
    """A question left unresolved in the transcript."""


class RiskItem(ExtractedItem):
    """A risk, blocker or dependency, or an overlapping-speech warning."""


class ArtifactsPayload(BaseModel):
    """Output of the artifact extractor, before persistence."""

    summary: str
    protocol_draft: str
    key_topics: list[str] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    open_questions: list[OpenQuestion] = Field(default_factory=list)
    risks: list[RiskItem] = Field(default_factory=list)


class MeetingArtifacts(ArtifactsPayload):
    """Persisted artifacts; at most one per meeting."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ── Export ───────────────────────────────────────────────────────────────────


class ExportRecord(BaseModel):
    """Durable status of one export operation."""

    id: str = Field(default_factory=new_id)
    meeting_id: str
    provider: str = "google_docs"
    status: ExportStatus = ExportStatus.PENDING
    retries: int = 0
    external_id: str | None = None
    url: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExportRecordPatch(BaseModel):
    """Partial update for an export record (only set fields are applied)."""

    status: ExportStatus | None = None
    retries: int | None = None
    external_id: str | None = None
    url: str | None = None
    error_message: str | None = None


# ── Aggregates / Results ─────────────────────────────────────────────────────


class MeetingDetails(BaseModel):
    """Denormalized view of a meeting and everything attached to it."""

    meeting: Meeting
    participants: list[Participant] = Field(default_factory=list)
    segments: list[TranscriptSegment] = Field(default_factory=list)
    artifacts: MeetingArtifacts | None = None
    exports: list[ExportRecord] = Field(default_factory=list)


class IngestResult(BaseModel):
    segment: TranscriptSegment


class FinalizeResult(BaseModel):
    meeting: Meeting
    artifacts: MeetingArtifacts
    export_record: ExportRecord
