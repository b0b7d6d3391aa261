"""Meeting persistence models.

Five SQLAlchemy models:
- ParticipantModel: Registered speakers with optional voice profile (JSON)
- MeetingModel: Meeting lifecycle row; participant ids stored as a JSON list
- SegmentModel: Append-only transcript segments
- ArtifactsModel: Derived notes, one row per meeting, item lists as JSON
- ExportRecordModel: Status of each document export operation

Ids are application-generated UUID strings so the same schemas round-trip
through the in-memory repository unchanged. No foreign key constraints
(referential integrity is enforced by the orchestrator).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.meetscribe.core.database import Base


class ParticipantModel(Base):
    """A person who can be attributed transcript segments."""

    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    voice_profile_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class MeetingModel(Base):
    """Meeting lifecycle row.

    Status transitions are written with a conditional UPDATE on the
    current status, so concurrent writers cannot both win.
    """

    __tablename__ = "meetings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    language: Mapped[str] = mapped_column(String(16), default="sv")
    status: Mapped[str] = mapped_column(String(20), default="live", index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    doc_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    participant_ids: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class SegmentModel(Base):
    """One attributed utterance. Rows are never updated."""

    __tablename__ = "transcript_segments"
    __table_args__ = (
        Index("ix_segments_meeting_timestamp", "meeting_id", "timestamp_ms"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False)
    participant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    speaker_label: Mapped[str] = mapped_column(String(120), nullable=False)
    diarization_label: Mapped[str | None] = mapped_column(String(80), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    is_overlapping: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ArtifactsModel(Base):
    """Derived meeting notes. Upserted on re-finalize, never duplicated."""

    __tablename__ = "meeting_artifacts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    summary: Mapped[str] = mapped_column(Text, default="")
    protocol_draft: Mapped[str] = mapped_column(Text, default="")
    key_topics_data: Mapped[list] = mapped_column(JSON, default=list)
    decisions_data: Mapped[list] = mapped_column(JSON, default=list)
    action_items_data: Mapped[list] = mapped_column(JSON, default=list)
    open_questions_data: Mapped[list] = mapped_column(JSON, default=list)
    risks_data: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class ExportRecordModel(Base):
    """Status of one export operation; retries mutate the same row."""

    __tablename__ = "export_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    meeting_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), default="google_docs")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    retries: Mapped[int] = mapped_column(Integer, default=0)
    external_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
