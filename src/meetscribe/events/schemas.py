"""Live meeting event schemas.

Three event variants travel over the per-meeting bus, discriminated on
``type``: a newly persisted segment, a status change or advisory, and a
transport heartbeat. Transports serialize them with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from src.meetscribe.meetings.schemas import MeetingStatus, TranscriptSegment


class SegmentEvent(BaseModel):
    """A transcript segment was appended."""

    type: Literal["segment"] = "segment"
    segment: TranscriptSegment


class StatusEvent(BaseModel):
    """Meeting status changed, or an advisory about the current status."""

    type: Literal["status"] = "status"
    status: MeetingStatus
    message: str | None = None


class HeartbeatEvent(BaseModel):
    """Keep-alive emitted by transports while a subscriber is connected."""

    type: Literal["heartbeat"] = "heartbeat"
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


LiveEvent = Annotated[
    Union[SegmentEvent, StatusEvent, HeartbeatEvent],
    Field(discriminator="type"),
]

live_event_adapter: TypeAdapter[LiveEvent] = TypeAdapter(LiveEvent)
