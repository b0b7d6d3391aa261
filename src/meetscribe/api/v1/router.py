"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.meetscribe.api.v1 import meetings, participants

router = APIRouter(prefix="/api/v1")

router.include_router(participants.router)
router.include_router(meetings.router)
