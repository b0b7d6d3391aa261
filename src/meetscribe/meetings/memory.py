"""In-memory MeetingRepository.

Same async interface as MeetingRepository, backed by dicts. Used when no
DATABASE_URL is configured (local development, demos) and as the storage
double in tests. Data is lost on restart.

Every read returns a copy, so callers cannot mutate stored state. All
methods complete without awaiting, which makes each call atomic with
respect to other coroutines on the same event loop.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.meetscribe.meetings.schemas import (
    ArtifactsPayload,
    ExportRecord,
    ExportRecordPatch,
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
    new_id,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryMeetingRepository:
    """Dict-backed repository for participants, meetings and their data."""

    def __init__(self) -> None:
        self.participants: dict[str, Participant] = {}
        self.meetings: dict[str, Meeting] = {}
        self.segments: dict[str, list[TranscriptSegment]] = {}
        self.artifacts: dict[str, MeetingArtifacts] = {}
        self.exports: dict[str, ExportRecord] = {}

    # ── Participants ─────────────────────────────────────────────────────

    async def create_participant(self, data: ParticipantCreate) -> Participant:
        participant = Participant(name=data.name, voice_profile=data.voice_profile)
        self.participants[participant.id] = participant
        return participant.model_copy(deep=True)

    async def list_participants(self) -> list[Participant]:
        return [
            p.model_copy(deep=True)
            for p in sorted(self.participants.values(), key=lambda p: p.name.lower())
        ]

    async def get_participant(self, participant_id: str) -> Participant | None:
        p = self.participants.get(participant_id)
        return p.model_copy(deep=True) if p else None

    async def get_participants(self, participant_ids: list[str]) -> list[Participant]:
        return [
            self.participants[pid].model_copy(deep=True)
            for pid in participant_ids
            if pid in self.participants
        ]

    async def update_voice_profile(
        self, participant_id: str, profile: VoiceProfile | None
    ) -> Participant | None:
        p = self.participants.get(participant_id)
        if p is None:
            return None
        updated = p.model_copy(update={"voice_profile": profile}, deep=True)
        self.participants[participant_id] = updated
        return updated.model_copy(deep=True)

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, meeting: Meeting) -> Meeting:
        self.meetings[meeting.id] = meeting.model_copy(deep=True)
        self.segments.setdefault(meeting.id, [])
        return meeting.model_copy(deep=True)

    async def list_meetings(self, search: str | None = None) -> list[Meeting]:
        meetings = sorted(
            self.meetings.values(), key=lambda m: m.started_at, reverse=True
        )
        if search and search.strip():
            needle = search.strip().lower()
            meetings = [m for m in meetings if needle in m.title.lower()]
        return [m.model_copy(deep=True) for m in meetings]

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        m = self.meetings.get(meeting_id)
        return m.model_copy(deep=True) if m else None

    async def update_meeting_status(
        self,
        meeting_id: str,
        status: MeetingStatus,
        patch: MeetingPatch | None = None,
        expected_status: MeetingStatus | None = None,
    ) -> Meeting | None:
        m = self.meetings.get(meeting_id)
        if m is None:
            return None
        if expected_status is not None and m.status != expected_status:
            return None

        changes = patch.model_dump(exclude_unset=True) if patch else {}
        changes.update(status=status, updated_at=_now())
        updated = m.model_copy(update=changes, deep=True)
        self.meetings[meeting_id] = updated
        return updated.model_copy(deep=True)

    async def patch_meeting(self, meeting_id: str, patch: MeetingPatch) -> Meeting | None:
        m = self.meetings.get(meeting_id)
        if m is None:
            return None
        changes = patch.model_dump(exclude_unset=True)
        changes["updated_at"] = _now()
        updated = m.model_copy(update=changes, deep=True)
        self.meetings[meeting_id] = updated
        return updated.model_copy(deep=True)

    # ── Segments ─────────────────────────────────────────────────────────

    async def add_segment(self, data: SegmentCreate) -> TranscriptSegment:
        if data.meeting_id not in self.meetings:
            raise ValueError(f"Meeting not found: {data.meeting_id}")
        segment = TranscriptSegment(**data.model_dump())
        self.segments.setdefault(data.meeting_id, []).append(segment)
        return segment.model_copy(deep=True)

    async def list_segments(self, meeting_id: str) -> list[TranscriptSegment]:
        return [s.model_copy(deep=True) for s in self.segments.get(meeting_id, [])]

    # ── Artifacts ────────────────────────────────────────────────────────

    async def upsert_artifacts(
        self, meeting_id: str, payload: ArtifactsPayload
    ) -> MeetingArtifacts:
        existing = self.artifacts.get(meeting_id)
        now = _now()
        artifacts = MeetingArtifacts(
            **payload.model_dump(),
            id=existing.id if existing else new_id(),
            meeting_id=meeting_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.artifacts[meeting_id] = artifacts
        return artifacts.model_copy(deep=True)

    async def get_artifacts(self, meeting_id: str) -> MeetingArtifacts | None:
        a = self.artifacts.get(meeting_id)
        return a.model_copy(deep=True) if a else None

    # ── Export Records ───────────────────────────────────────────────────

    async def create_export_record(
        self, meeting_id: str, provider: str = "google_docs"
    ) -> ExportRecord:
        record = ExportRecord(meeting_id=meeting_id, provider=provider)
        self.exports[record.id] = record
        return record.model_copy(deep=True)

    async def update_export_record(
        self, record_id: str, patch: ExportRecordPatch
    ) -> ExportRecord:
        record = self.exports.get(record_id)
        if record is None:
            raise ValueError(f"Export record not found: {record_id}")
        changes = patch.model_dump(exclude_unset=True)
        changes["updated_at"] = _now()
        updated = record.model_copy(update=changes, deep=True)
        self.exports[record_id] = updated
        return updated.model_copy(deep=True)

    async def list_export_records(self, meeting_id: str) -> list[ExportRecord]:
        records = [r for r in self.exports.values() if r.meeting_id == meeting_id]
        return [r.model_copy(deep=True) for r in sorted(records, key=lambda r: r.created_at)]

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
