"""MeetingOrchestrator -- meeting lifecycle from live ingestion to export.

Owns the per-meeting state machine and sequences every multi-step
operation:

- ingest_chunk: transcribe -> attribute speaker -> persist -> publish
- finalize_meeting: live -> processing -> extract artifacts -> completed
  -> export with bounded retry -> publish final status
- export_to_document: on-demand re-export of existing artifacts
- abandon_meeting: move a non-terminal meeting to failed

Status transitions follow VALID_TRANSITIONS and are written with a
conditional update against the status the orchestrator observed.

Concurrency: two per-meeting asyncio.Locks, held in weak-valued registries
so idle meetings cost nothing.
- lifecycle lock: finalize, export and abandon never overlap per meeting
- write lock: ingestion's live re-check + segment write, and finalize's
  live -> processing transition. A chunk that passes the re-check is
  persisted before finalize can read the transcript.
Transcription runs outside both locks.

Export failure never fails finalize: attempts are recorded on one export
record and the meeting keeps status ``completed`` with an error message.
"""

from __future__ import annotations

import asyncio
import math
import weakref
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Protocol

import structlog

from src.meetscribe.core.monitoring import (
    export_attempts_total,
    late_chunks_ignored_total,
    segments_ingested_total,
    track_finalize,
)
from src.meetscribe.events.bus import LiveEventBus
from src.meetscribe.events.schemas import SegmentEvent, StatusEvent
from src.meetscribe.meetings.errors import (
    InvalidStateError,
    MeetingNotLiveError,
    NotFoundError,
    ValidationError,
)
from src.meetscribe.meetings.minutes.exporter import (
    DocumentExportRequest,
    DocumentExportResult,
)
from src.meetscribe.meetings.minutes.extractor import ArtifactExtractor
from src.meetscribe.meetings.minutes.lexicon import get_lexicon
from src.meetscribe.meetings.schemas import (
    ChunkIngestRequest,
    ExportRecord,
    ExportRecordPatch,
    ExportStatus,
    FinalizeResult,
    IngestResult,
    Meeting,
    MeetingArtifacts,
    MeetingDetails,
    MeetingPatch,
    MeetingStatus,
    Participant,
    ParticipantCreate,
    SegmentCreate,
    TranscriptSegment,
    VoiceProfile,
    utcnow,
)
from src.meetscribe.meetings.speaker_mapper import SpeakerMapper
from src.meetscribe.meetings.transcription import (
    TranscriptionRequest,
    TranscriptionResult,
)

logger = structlog.get_logger(__name__)

MAX_PARTICIPANTS = 5
MIN_PARTICIPANT_NAME_CHARS = 2
MAX_PARTICIPANT_NAME_CHARS = 120

VALID_TRANSITIONS: dict[MeetingStatus, set[MeetingStatus]] = {
    MeetingStatus.LIVE: {MeetingStatus.PROCESSING, MeetingStatus.FAILED},
    MeetingStatus.PROCESSING: {MeetingStatus.COMPLETED, MeetingStatus.FAILED},
    MeetingStatus.COMPLETED: set(),  # Terminal
    MeetingStatus.FAILED: set(),  # Terminal
}


def validate_status_transition(from_status: MeetingStatus, to_status: MeetingStatus) -> None:
    """Raise InvalidStateError unless the transition is allowed."""
    if to_status not in VALID_TRANSITIONS.get(from_status, set()):
        raise InvalidStateError(
            f"Invalid status transition: {from_status.value} -> {to_status.value}",
            status=from_status.value,
        )


# ── Collaborator Protocols ──────────────────────────────────────────────────


class Transcriber(Protocol):
    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResult: ...


class ExportGateway(Protocol):
    async def export_meeting(self, request: DocumentExportRequest) -> DocumentExportResult: ...


class _LockRegistry:
    """Per-key asyncio.Lock, dropped once no coroutine references it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def _resolve_confidence(value: float | None, fallback: float) -> float:
    """Caller confidence clamped to [0, 1]; missing or NaN uses the STT score."""
    if value is None or math.isnan(value):
        value = fallback
    return min(1.0, max(0.0, value))


# ── Orchestrator ────────────────────────────────────────────────────────────


class MeetingOrchestrator:
    """Drives meetings through live ingestion, finalize and export.

    Args:
        repository: MeetingRepository or InMemoryMeetingRepository.
        transcriber: Speech-to-text collaborator (never raises).
        exporter: Document export gateway (may raise; retried).
        event_bus: Live event fan-out.
        speaker_mapper: Attribution rules plus per-meeting memory.
        extractor: Artifact extractor.
        default_language: Language for meetings created without one.
        max_export_attempts: Export attempts per export operation.
        export_backoff_ms: Base delay; attempt N waits N * base before retrying.
        low_confidence_threshold: Segments below this publish an advisory.
        clock: Source of "now", injectable for tests.
    """

    def __init__(
        self,
        repository,
        transcriber: Transcriber,
        exporter: ExportGateway,
        event_bus: LiveEventBus,
        speaker_mapper: SpeakerMapper | None = None,
        extractor: ArtifactExtractor | None = None,
        default_language: str = "sv",
        max_export_attempts: int = 3,
        export_backoff_ms: int = 300,
        low_confidence_threshold: float = 0.5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._transcriber = transcriber
        self._exporter = exporter
        self._event_bus = event_bus
        self._speaker_mapper = speaker_mapper or SpeakerMapper()
        self._extractor = extractor or ArtifactExtractor()
        self._default_language = default_language
        self._max_export_attempts = max(1, max_export_attempts)
        self._export_backoff_ms = max(0, export_backoff_ms)
        self._low_confidence_threshold = low_confidence_threshold
        self._clock = clock
        self._lifecycle_locks = _LockRegistry()
        self._write_locks = _LockRegistry()

    @property
    def speaker_mapper(self) -> SpeakerMapper:
        return self._speaker_mapper

    # ── Participants ─────────────────────────────────────────────────────

    async def create_participant(
        self, name: str, voice_profile: VoiceProfile | None = None
    ) -> Participant:
        """Register a participant.

        Raises:
            ValidationError: If the trimmed name is shorter than 2 or longer
                than 120 characters.
        """
        cleaned = name.strip()
        if len(cleaned) < MIN_PARTICIPANT_NAME_CHARS:
            raise ValidationError("Participant name must be at least 2 characters")
        if len(cleaned) > MAX_PARTICIPANT_NAME_CHARS:
            raise ValidationError("Participant name must be at most 120 characters")

        participant = await self._repository.create_participant(
            ParticipantCreate(name=cleaned, voice_profile=voice_profile)
        )
        logger.info("participant_created", participant_id=participant.id)
        return participant

    async def list_participants(self) -> list[Participant]:
        return await self._repository.list_participants()

    async def update_voice_profile(
        self, participant_id: str, profile: VoiceProfile | None
    ) -> Participant:
        """Replace a participant's voice profile (None clears it)."""
        updated = await self._repository.update_voice_profile(participant_id, profile)
        if updated is None:
            raise NotFoundError(f"Participant not found: {participant_id}")
        logger.info(
            "voice_profile_updated",
            participant_id=participant_id,
            has_embedding=bool(profile and profile.embedding),
        )
        return updated

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(
        self,
        title: str,
        participant_ids: Sequence[str],
        language: str | None = None,
    ) -> Meeting:
        """Start a new live meeting.

        Duplicate participant ids are collapsed (first occurrence kept)
        before the size check.

        Raises:
            ValidationError: No participants, more than 5, or unknown ids.
        """
        ids = list(dict.fromkeys(pid.strip() for pid in participant_ids if pid and pid.strip()))
        if not ids:
            raise ValidationError("At least one participant is required")
        if len(ids) > MAX_PARTICIPANTS:
            raise ValidationError(f"At most {MAX_PARTICIPANTS} participants are allowed")

        found = await self._repository.get_participants(ids)
        found_ids = {p.id for p in found}
        missing = [pid for pid in ids if pid not in found_ids]
        if missing:
            raise ValidationError(f"Unknown participant ids: {', '.join(missing)}")

        now = self._clock()
        resolved_language = (language or "").strip() or self._default_language
        lexicon = get_lexicon(resolved_language)
        resolved_title = title.strip() or lexicon.default_title.format(
            date=now.strftime("%Y-%m-%d")
        )

        meeting = await self._repository.create_meeting(
            Meeting(
                title=resolved_title,
                language=resolved_language,
                status=MeetingStatus.LIVE,
                started_at=now,
                participant_ids=ids,
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "meeting_created",
            meeting_id=meeting.id,
            participants=len(ids),
            language=resolved_language,
        )
        return meeting

    async def list_meetings(self, search: str | None = None) -> list[Meeting]:
        return await self._repository.list_meetings(search)

    async def get_meeting_details(self, meeting_id: str) -> MeetingDetails:
        details = await self._repository.get_meeting_details(meeting_id)
        if details is None:
            raise NotFoundError(f"Meeting not found: {meeting_id}")
        return details

    # ── Ingestion ────────────────────────────────────────────────────────

    async def ingest_chunk(self, meeting_id: str, chunk: ChunkIngestRequest) -> IngestResult:
        """Transcribe, attribute and persist one chunk of a live meeting.

        Args:
            meeting_id: Target meeting.
            chunk: Typed text or base64 audio plus attribution signals.

        Returns:
            IngestResult with the persisted segment.

        Raises:
            ValidationError: Neither text nor audio, or empty transcription.
            NotFoundError: Unknown meeting.
            MeetingNotLiveError: Meeting already left ``live`` (benign).
        """
        has_text = bool(chunk.text and chunk.text.strip())
        if not has_text and not chunk.audio_base64:
            raise ValidationError("Either text or audio_base64 is required")

        meeting = await self._require_meeting(meeting_id)
        self._ensure_live(meeting)

        transcription = await self._transcriber.transcribe(
            TranscriptionRequest(
                text=chunk.text if has_text else None,
                audio_base64=chunk.audio_base64,
                mime_type=chunk.mime_type,
                language=meeting.language,
            )
        )
        text = transcription.text.strip()
        if not text:
            raise ValidationError("Transcription produced no text")

        participants = await self._repository.get_participants(meeting.participant_ids)
        confidence = _resolve_confidence(chunk.confidence, transcription.confidence)

        async with self._write_locks.get(meeting_id):
            current = await self._require_meeting(meeting_id)
            self._ensure_live(current)

            attribution = self._speaker_mapper.map(
                meeting_id,
                participants,
                text,
                speaker_hint_id=chunk.speaker_hint_id,
                diarization_label=chunk.diarization_label,
                voice_embedding=chunk.voice_embedding,
                language=meeting.language,
            )
            elapsed = self._clock() - current.started_at
            segment = await self._repository.add_segment(
                SegmentCreate(
                    meeting_id=meeting_id,
                    participant_id=attribution.participant_id,
                    speaker_label=attribution.speaker_label,
                    diarization_label=chunk.diarization_label,
                    text=text,
                    confidence=confidence,
                    timestamp_ms=max(0, int(elapsed.total_seconds() * 1000)),
                    is_overlapping=bool(chunk.is_overlapping),
                )
            )

        segments_ingested_total.labels(source=attribution.source.value).inc()
        logger.info(
            "segment_ingested",
            meeting_id=meeting_id,
            segment_id=segment.id,
            attribution=attribution.source.value,
            provider=transcription.provider,
            confidence=confidence,
        )

        self._event_bus.publish(meeting_id, SegmentEvent(segment=segment))
        if confidence < self._low_confidence_threshold:
            self._event_bus.publish(
                meeting_id,
                StatusEvent(
                    status=MeetingStatus.LIVE,
                    message=get_lexicon(meeting.language).low_quality_advisory,
                ),
            )

        return IngestResult(segment=segment)

    # ── Finalize ─────────────────────────────────────────────────────────

    async def finalize_meeting(self, meeting_id: str) -> FinalizeResult:
        """Close a live meeting, derive its artifacts and export them.

        A concurrent second call waits for the first, then fails with
        InvalidStateError because the meeting is no longer live.

        Returns:
            FinalizeResult with the completed meeting, artifacts and the
            export record (success or failed).

        Raises:
            NotFoundError: Unknown meeting.
            InvalidStateError: Meeting is not live.
        """
        with structlog.contextvars.bound_contextvars(meeting_id=meeting_id):
            async with self._lifecycle_locks.get(meeting_id):
                async with track_finalize() as tracker:
                    result = await self._finalize_locked(meeting_id)
                    tracker["export_status"] = result.export_record.status.value
                    return result

    async def _finalize_locked(self, meeting_id: str) -> FinalizeResult:
        meeting = await self._require_meeting(meeting_id)
        validate_status_transition(meeting.status, MeetingStatus.PROCESSING)
        lexicon = get_lexicon(meeting.language)

        async with self._write_locks.get(meeting_id):
            processing = await self._repository.update_meeting_status(
                meeting_id,
                MeetingStatus.PROCESSING,
                expected_status=MeetingStatus.LIVE,
            )
        if processing is None:
            current = await self._require_meeting(meeting_id)
            raise InvalidStateError(
                f"Meeting {meeting_id} cannot be finalized (status={current.status.value})",
                status=current.status.value,
            )

        logger.info("meeting_processing", meeting_id=meeting_id)
        self._event_bus.publish(
            meeting_id,
            StatusEvent(status=MeetingStatus.PROCESSING, message=lexicon.processing_message),
        )

        try:
            participants = await self._repository.get_participants(processing.participant_ids)
            segments = await self._repository.list_segments(meeting_id)
            payload = self._extractor.generate(processing, participants, segments)
            artifacts = await self._repository.upsert_artifacts(meeting_id, payload)

            completed = await self._repository.update_meeting_status(
                meeting_id,
                MeetingStatus.COMPLETED,
                MeetingPatch(ended_at=self._clock()),
                expected_status=MeetingStatus.PROCESSING,
            )
            if completed is None:
                raise InvalidStateError(
                    f"Meeting {meeting_id} left processing during finalize",
                    status=MeetingStatus.PROCESSING.value,
                )
        except Exception as exc:
            await self._fail_meeting(meeting_id, str(exc) or exc.__class__.__name__)
            raise
        finally:
            self._speaker_mapper.forget_meeting(meeting_id)

        logger.info(
            "meeting_completed",
            meeting_id=meeting_id,
            segments=len(segments),
            decisions=len(artifacts.decisions),
            action_items=len(artifacts.action_items),
        )

        export_record = await self._run_export(completed, artifacts, participants, segments)
        final_meeting = await self._require_meeting(meeting_id)

        exported = export_record.status == ExportStatus.SUCCESS
        self._event_bus.publish(
            meeting_id,
            StatusEvent(
                status=MeetingStatus.COMPLETED,
                message=(
                    lexicon.completed_exported if exported else lexicon.completed_needs_attention
                ),
            ),
        )

        return FinalizeResult(
            meeting=final_meeting,
            artifacts=artifacts,
            export_record=export_record,
        )

    async def _fail_meeting(self, meeting_id: str, reason: str) -> None:
        """Move a processing meeting to failed after a lifecycle error."""
        logger.error("meeting_finalize_failed", meeting_id=meeting_id, error=reason)
        try:
            failed = await self._repository.update_meeting_status(
                meeting_id,
                MeetingStatus.FAILED,
                MeetingPatch(ended_at=self._clock(), error_message=reason),
                expected_status=MeetingStatus.PROCESSING,
            )
        except Exception:
            # The original error is re-raised by the caller
            logger.error("meeting_fail_transition_failed", meeting_id=meeting_id, exc_info=True)
            return

        if failed is not None:
            self._event_bus.publish(
                meeting_id,
                StatusEvent(status=MeetingStatus.FAILED, message=reason),
            )

    # ── Export ───────────────────────────────────────────────────────────

    async def export_to_document(self, meeting_id: str) -> ExportRecord:
        """Re-run the document export for a meeting's existing artifacts.

        Raises:
            NotFoundError: Unknown meeting.
            ValidationError: Meeting has no artifacts yet.
        """
        with structlog.contextvars.bound_contextvars(meeting_id=meeting_id):
            async with self._lifecycle_locks.get(meeting_id):
                meeting = await self._require_meeting(meeting_id)
                artifacts = await self._repository.get_artifacts(meeting_id)
                if artifacts is None:
                    raise ValidationError(
                        f"Meeting {meeting_id} has no artifacts; finalize it first"
                    )
                participants = await self._repository.get_participants(meeting.participant_ids)
                segments = await self._repository.list_segments(meeting_id)
                return await self._run_export(meeting, artifacts, participants, segments)

    async def _run_export(
        self,
        meeting: Meeting,
        artifacts: MeetingArtifacts,
        participants: list[Participant],
        segments: list[TranscriptSegment],
    ) -> ExportRecord:
        """Export with bounded retry, recording every attempt on one record."""
        record = await self._repository.create_export_record(meeting.id)
        request = DocumentExportRequest(
            meeting=meeting,
            participants=participants,
            artifacts=artifacts,
            segments=segments,
        )

        for attempt in range(1, self._max_export_attempts + 1):
            try:
                result = await self._exporter.export_meeting(request)
            except Exception as exc:
                last_attempt = attempt == self._max_export_attempts
                export_attempts_total.labels(outcome="failure").inc()
                logger.warning(
                    "document_export_attempt_failed",
                    meeting_id=meeting.id,
                    export_id=record.id,
                    attempt=attempt,
                    error=str(exc),
                    exc_info=True,
                )
                record = await self._repository.update_export_record(
                    record.id,
                    ExportRecordPatch(
                        status=ExportStatus.FAILED if last_attempt else ExportStatus.PENDING,
                        retries=attempt,
                        error_message=str(exc) or exc.__class__.__name__,
                    ),
                )
                if not last_attempt:
                    await asyncio.sleep(attempt * self._export_backoff_ms / 1000)
                continue

            export_attempts_total.labels(outcome="success").inc()
            record = await self._repository.update_export_record(
                record.id,
                ExportRecordPatch(
                    status=ExportStatus.SUCCESS,
                    retries=attempt - 1,
                    external_id=result.external_id,
                    url=result.url,
                    error_message=None,
                ),
            )
            await self._repository.patch_meeting(
                meeting.id, MeetingPatch(doc_url=result.url, error_message=None)
            )
            logger.info(
                "document_export_succeeded",
                meeting_id=meeting.id,
                export_id=record.id,
                attempt=attempt,
                mode=result.mode,
            )
            return record

        await self._repository.patch_meeting(
            meeting.id,
            MeetingPatch(error_message=get_lexicon(meeting.language).export_failed_notice),
        )
        logger.error(
            "document_export_exhausted",
            meeting_id=meeting.id,
            export_id=record.id,
            attempts=self._max_export_attempts,
        )
        return record

    # ── Abandon ──────────────────────────────────────────────────────────

    async def abandon_meeting(self, meeting_id: str, reason: str | None = None) -> Meeting:
        """Mark a live or stuck processing meeting as failed.

        Raises:
            NotFoundError: Unknown meeting.
            InvalidStateError: Meeting already completed or failed.
        """
        with structlog.contextvars.bound_contextvars(meeting_id=meeting_id):
            async with self._lifecycle_locks.get(meeting_id):
                meeting = await self._require_meeting(meeting_id)
                validate_status_transition(meeting.status, MeetingStatus.FAILED)
                message = (reason or "").strip() or get_lexicon(meeting.language).abandoned_message

                async with self._write_locks.get(meeting_id):
                    failed = await self._repository.update_meeting_status(
                        meeting_id,
                        MeetingStatus.FAILED,
                        MeetingPatch(ended_at=self._clock(), error_message=message),
                        expected_status=meeting.status,
                    )
                if failed is None:
                    raise InvalidStateError(
                        f"Meeting {meeting_id} changed status while abandoning",
                        status=meeting.status.value,
                    )

                self._speaker_mapper.forget_meeting(meeting_id)
                logger.info(
                    "meeting_abandoned",
                    meeting_id=meeting_id,
                    previous_status=meeting.status.value,
                )
                self._event_bus.publish(
                    meeting_id,
                    StatusEvent(status=MeetingStatus.FAILED, message=message),
                )
                return failed

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _require_meeting(self, meeting_id: str) -> Meeting:
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Meeting not found: {meeting_id}")
        return meeting

    @staticmethod
    def _ensure_live(meeting: Meeting) -> None:
        if meeting.status != MeetingStatus.LIVE:
            late_chunks_ignored_total.inc()
            logger.info(
                "late_chunk_ignored",
                meeting_id=meeting.id,
                status=meeting.status.value,
            )
            raise MeetingNotLiveError(meeting.id, meeting.status.value)
