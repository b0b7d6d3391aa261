"""REST endpoints for participants.

Participants are registered once and selected when a meeting starts. The
optional voice profile (embedding + notes) feeds embedding-based speaker
attribution.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from src.meetscribe.meetings.schemas import Participant, VoiceProfile

router = APIRouter(prefix="/participants", tags=["participants"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class VoiceProfileBody(BaseModel):
    """Voice profile payload; embedding length is bounded like chunk embeddings."""

    embedding: list[float] | None = Field(None, min_length=1, max_length=4096)
    notes: str | None = Field(None, max_length=2000)

    def to_profile(self) -> VoiceProfile:
        return VoiceProfile(embedding=self.embedding, notes=self.notes)


class ParticipantBody(BaseModel):
    """Request body for registering a participant."""

    name: str = Field(min_length=1, max_length=120)
    voice_profile: VoiceProfileBody | None = None


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


# ── REST Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[Participant])
async def list_participants(request: Request) -> list[Participant]:
    """List all participants ordered by name."""
    return await _get_orchestrator(request).list_participants()


@router.post("", response_model=Participant, status_code=status.HTTP_201_CREATED)
async def create_participant(body: ParticipantBody, request: Request) -> Participant:
    """Register a participant (name is trimmed; at least 2 characters)."""
    orchestrator = _get_orchestrator(request)
    return await orchestrator.create_participant(
        body.name,
        voice_profile=body.voice_profile.to_profile() if body.voice_profile else None,
    )


@router.patch("/{participant_id}/voice-profile", response_model=Participant)
async def update_voice_profile(
    participant_id: str,
    body: VoiceProfileBody,
    request: Request,
) -> Participant:
    """Replace a participant's voice profile."""
    orchestrator = _get_orchestrator(request)
    return await orchestrator.update_voice_profile(participant_id, body.to_profile())
