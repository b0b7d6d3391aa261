"""Meeting repository -- async CRUD for all meeting entities.

Provides MeetingRepository with the session_factory callable pattern.
Handles serialization between Pydantic schemas and SQLAlchemy models for
participants, meetings, transcript segments, artifacts and export records.

JSON columns use Pydantic model_dump(mode="json") for save and
model_validate() for load.

Status changes go through update_meeting_status(), which issues a single
conditional UPDATE (``WHERE status = :expected``) so a transition only
succeeds against the state the caller observed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetscribe.meetings.models import (
    ArtifactsModel,
    ExportRecordModel,
    MeetingModel,
    ParticipantModel,
    SegmentModel,
)
from src.meetscribe.meetings.schemas import (
    ActionItem,
    ArtifactsPayload,
    Decision,
    ExportRecord,
    ExportRecordPatch,
    ExportStatus,
    Meeting,
    MeetingArtifacts,
    MeetingDetails,
    MeetingPatch,
    MeetingStatus,
    OpenQuestion,
    Participant,
    ParticipantCreate,
    RiskItem,
    SegmentCreate,
    TranscriptSegment,
    VoiceProfile,
    new_id,
    utcnow,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_participant(model: ParticipantModel) -> Participant:
    """Convert ParticipantModel to Participant schema."""
    return Participant(
        id=model.id,
        name=model.name,
        voice_profile=(
            VoiceProfile.model_validate(model.voice_profile_data)
            if model.voice_profile_data
            else None
        ),
        created_at=model.created_at,
    )


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        title=model.title,
        language=model.language,
        status=MeetingStatus(model.status),
        started_at=model.started_at,
        ended_at=model.ended_at,
        doc_url=model.doc_url,
        error_message=model.error_message,
        participant_ids=list(model.participant_ids or []),
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_segment(model: SegmentModel) -> TranscriptSegment:
    """Convert SegmentModel to TranscriptSegment schema."""
    return TranscriptSegment(
        id=model.id,
        meeting_id=model.meeting_id,
        participant_id=model.participant_id,
        speaker_label=model.speaker_label,
        diarization_label=model.diarization_label,
        text=model.text,
        confidence=model.confidence,
        timestamp_ms=model.timestamp_ms,
        is_overlapping=model.is_overlapping,
        created_at=model.created_at,
    )


def _model_to_artifacts(model: ArtifactsModel) -> MeetingArtifacts:
    """Convert ArtifactsModel to MeetingArtifacts schema."""
    return MeetingArtifacts(
        id=model.id,
        meeting_id=model.meeting_id,
        summary=model.summary or "",
        protocol_draft=model.protocol_draft or "",
        key_topics=list(model.key_topics_data or []),
        decisions=[Decision.model_validate(d) for d in (model.decisions_data or [])],
        action_items=[
            ActionItem.model_validate(a) for a in (model.action_items_data or [])
        ],
        open_questions=[
            OpenQuestion.model_validate(q) for q in (model.open_questions_data or [])
        ],
        risks=[RiskItem.model_validate(r) for r in (model.risks_data or [])],
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_export(model: ExportRecordModel) -> ExportRecord:
    """Convert ExportRecordModel to ExportRecord schema."""
    return ExportRecord(
        id=model.id,
        meeting_id=model.meeting_id,
        provider=model.provider,
        status=ExportStatus(model.status),
        retries=model.retries,
        external_id=model.external_id,
        url=model.url,
        error_message=model.error_message,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for all meeting entities.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Participants ─────────────────────────────────────────────────────

    async def create_participant(self, data: ParticipantCreate) -> Participant:
        async for session in self._session_factory():
            model = ParticipantModel(
                id=new_id(),
                name=data.name,
                voice_profile_data=(
                    data.voice_profile.model_dump(mode="json")
                    if data.voice_profile
                    else None
                ),
                created_at=utcnow(),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_participant(model)

    async def list_participants(self) -> list[Participant]:
        """All participants ordered by name."""
        async for session in self._session_factory():
            result = await session.execute(
                select(ParticipantModel).order_by(ParticipantModel.name)
            )
            return [_model_to_participant(m) for m in result.scalars().all()]

    async def get_participant(self, participant_id: str) -> Participant | None:
        async for session in self._session_factory():
            model = await session.get(ParticipantModel, participant_id)
            return _model_to_participant(model) if model else None

    async def get_participants(self, participant_ids: list[str]) -> list[Participant]:
        """Participants for the given ids, in the given order; unknown ids skipped."""
        if not participant_ids:
            return []
        async for session in self._session_factory():
            result = await session.execute(
                select(ParticipantModel).where(ParticipantModel.id.in_(participant_ids))
            )
            by_id = {m.id: _model_to_participant(m) for m in result.scalars().all()}
            return [by_id[pid] for pid in participant_ids if pid in by_id]

    async def update_voice_profile(
        self, participant_id: str, profile: VoiceProfile | None
    ) -> Participant | None:
        async for session in self._session_factory():
            model = await session.get(ParticipantModel, participant_id)
            if model is None:
                return None
            model.voice_profile_data = (
                profile.model_dump(mode="json") if profile else None
            )
            await session.commit()
            await session.refresh(model)
            return _model_to_participant(model)

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, meeting: Meeting) -> Meeting:
        """Persist a new meeting entity built by the caller."""
        async for session in self._session_factory():
            model = MeetingModel(
                id=meeting.id,
                title=meeting.title,
                language=meeting.language,
                status=meeting.status.value,
                started_at=meeting.started_at,
                ended_at=meeting.ended_at,
                doc_url=meeting.doc_url,
                error_message=meeting.error_message,
                participant_ids=list(meeting.participant_ids),
                created_at=meeting.created_at,
                updated_at=meeting.updated_at,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def list_meetings(self, search: str | None = None) -> list[Meeting]:
        """Meetings newest first, optionally filtered by title substring."""
        async for session in self._session_factory():
            stmt = select(MeetingModel).order_by(MeetingModel.started_at.desc())
            if search and search.strip():
                stmt = stmt.where(MeetingModel.title.ilike(f"%{search.strip()}%"))
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            return _model_to_meeting(model) if model else None

    async def update_meeting_status(
        self,
        meeting_id: str,
        status: MeetingStatus,
        patch: MeetingPatch | None = None,
        expected_status: MeetingStatus | None = None,
    ) -> Meeting | None:
        """Write a status change and its auxiliary fields atomically.

        Args:
            meeting_id: Meeting id.
            status: New status.
            patch: ended_at / doc_url / error_message to set alongside.
            expected_status: Only update if the current status equals this.

        Returns:
            Updated Meeting, or None if the meeting is missing or its
            status did not match ``expected_status``.
        """
        values = patch.model_dump(exclude_unset=True) if patch else {}
        values.update(status=status.value, updated_at=datetime.now(timezone.utc))
        return await self._conditional_update(meeting_id, values, expected_status)

    async def patch_meeting(self, meeting_id: str, patch: MeetingPatch) -> Meeting | None:
        """Update auxiliary fields without touching the status."""
        values = patch.model_dump(exclude_unset=True)
        values["updated_at"] = datetime.now(timezone.utc)
        return await self._conditional_update(meeting_id, values, None)

    async def _conditional_update(
        self,
        meeting_id: str,
        values: dict,
        expected_status: MeetingStatus | None,
    ) -> Meeting | None:
        async for session in self._session_factory():
            stmt = update(MeetingModel).where(MeetingModel.id == meeting_id)
            if expected_status is not None:
                stmt = stmt.where(MeetingModel.status == expected_status.value)
            result = await session.execute(stmt.values(**values))
            await session.commit()

            if result.rowcount == 0:
                logger.debug(
                    "meeting_update_skipped",
                    meeting_id=meeting_id,
                    expected_status=expected_status.value if expected_status else None,
                )
                return None

            model = await session.get(MeetingModel, meeting_id, populate_existing=True)
            return _model_to_meeting(model) if model else None

    # ── Segments ─────────────────────────────────────────────────────────

    async def add_segment(self, data: SegmentCreate) -> TranscriptSegment:
        async for session in self._session_factory():
            model = SegmentModel(
                id=new_id(),
                meeting_id=data.meeting_id,
                participant_id=data.participant_id,
                speaker_label=data.speaker_label,
                diarization_label=data.diarization_label,
                text=data.text,
                confidence=data.confidence,
                timestamp_ms=data.timestamp_ms,
                is_overlapping=data.is_overlapping,
                created_at=utcnow(),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_segment(model)

    async def list_segments(self, meeting_id: str) -> list[TranscriptSegment]:
        """Segments in transcript order."""
        async for session in self._session_factory():
            result = await session.execute(
                select(SegmentModel)
                .where(SegmentModel.meeting_id == meeting_id)
                .order_by(SegmentModel.timestamp_ms, SegmentModel.created_at)
            )
            return [_model_to_segment(m) for m in result.scalars().all()]

    # ── Artifacts ────────────────────────────────────────────────────────

    async def upsert_artifacts(
        self, meeting_id: str, payload: ArtifactsPayload
    ) -> MeetingArtifacts:
        """Insert or replace the single artifacts row for a meeting."""
        async for session in self._session_factory():
            result = await session.execute(
                select(ArtifactsModel).where(ArtifactsModel.meeting_id == meeting_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                model = ArtifactsModel(id=new_id(), meeting_id=meeting_id)
                session.add(model)

            model.summary = payload.summary
            model.protocol_draft = payload.protocol_draft
            model.key_topics_data = list(payload.key_topics)
            model.decisions_data = [d.model_dump(mode="json") for d in payload.decisions]
            model.action_items_data = [
                a.model_dump(mode="json") for a in payload.action_items
            ]
            model.open_questions_data = [
                q.model_dump(mode="json") for q in payload.open_questions
            ]
            model.risks_data = [r.model_dump(mode="json") for r in payload.risks]
            model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            return _model_to_artifacts(model)

    async def get_artifacts(self, meeting_id: str) -> MeetingArtifacts | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(ArtifactsModel).where(ArtifactsModel.meeting_id == meeting_id)
            )
            model = result.scalar_one_or_none()
            return _model_to_artifacts(model) if model else None

    # ── Export Records ───────────────────────────────────────────────────

    async def create_export_record(
        self, meeting_id: str, provider: str = "google_docs"
    ) -> ExportRecord:
        async for session in self._session_factory():
            model = ExportRecordModel(
                id=new_id(),
                meeting_id=meeting_id,
                provider=provider,
                status=ExportStatus.PENDING.value,
                retries=0,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_export(model)

    async def update_export_record(
        self, record_id: str, patch: ExportRecordPatch
    ) -> ExportRecord:
        """Apply explicitly set fields to an export record.

        Raises:
            ValueError: If the record does not exist.
        """
        async for session in self._session_factory():
            model = await session.get(ExportRecordModel, record_id)
            if model is None:
                raise ValueError(f"Export record not found: {record_id}")

            for field, value in patch.model_dump(exclude_unset=True).items():
                if field == "status" and value is not None:
                    value = ExportStatus(value).value
                setattr(model, field, value)
            model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            return _model_to_export(model)

    async def list_export_records(self, meeting_id: str) -> list[ExportRecord]:
        """Export records for a meeting, oldest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(ExportRecordModel)
                .where(ExportRecordModel.meeting_id == meeting_id)
                .order_by(ExportRecordModel.created_at)
            )
            return [_model_to_export(m) for m in result.scalars().all()]

    # ── Aggregates ───────────────────────────────────────────────────────

    async def get_meeting_details(self, meeting_id: str) -> MeetingDetails | None:
        meeting = await self.get_meeting(meeting_id)
        if meeting is None:
            return None
        return MeetingDetails(
            meeting=meeting,
            participants=await self.get_participants(meeting.participant_ids),
            segments=await self.list_segments(meeting_id),
            artifacts=await self.get_artifacts(meeting_id),
            exports=await self.list_export_records(meeting_id),
        )
