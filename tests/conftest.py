"""Shared fixtures for meeting tests.

Provides:
- In-memory repository and live event bus
- Mock-mode speech-to-text and an AsyncMock document exporter
- A MeetingOrchestrator wired from the above with zero export backoff
- Two registered participants (Anna, Björn)
- FastAPI app with services on app.state and an ASGI test client
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.meetscribe.events.bus import LiveEventBus
from src.meetscribe.main import create_app
from src.meetscribe.meetings.memory import InMemoryMeetingRepository
from src.meetscribe.meetings.minutes.exporter import DocumentExportResult
from src.meetscribe.meetings.orchestrator import MeetingOrchestrator
from src.meetscribe.meetings.schemas import Participant
from src.meetscribe.meetings.transcription import SpeechToTextService


def make_export_result(doc_id: str = "doc-1") -> DocumentExportResult:
    return DocumentExportResult(
        external_id=doc_id,
        url=f"https://docs.google.com/document/d/{doc_id}/edit",
        mode="google",
    )


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def event_bus() -> LiveEventBus:
    return LiveEventBus(queue_size=50)


@pytest.fixture
def transcriber() -> SpeechToTextService:
    return SpeechToTextService(use_mock=True)


@pytest.fixture
def exporter() -> AsyncMock:
    """Document exporter double; succeeds unless a test overrides side_effect."""
    mock = AsyncMock()
    mock.export_meeting.return_value = make_export_result()
    mock.mock_mode = True
    return mock


@pytest.fixture
def orchestrator(repository, transcriber, exporter, event_bus) -> MeetingOrchestrator:
    return MeetingOrchestrator(
        repository=repository,
        transcriber=transcriber,
        exporter=exporter,
        event_bus=event_bus,
        max_export_attempts=3,
        export_backoff_ms=0,
    )


@pytest_asyncio.fixture
async def participants(orchestrator) -> list[Participant]:
    anna = await orchestrator.create_participant("Anna")
    bjorn = await orchestrator.create_participant("Björn")
    return [anna, bjorn]


@pytest.fixture
def app(orchestrator, event_bus, exporter, repository, transcriber):
    """App with services set directly (ASGITransport does not run lifespan)."""
    application = create_app()
    application.state.orchestrator = orchestrator
    application.state.event_bus = event_bus
    application.state.exporter = exporter
    application.state.meeting_repository = repository
    application.state.transcriber = transcriber
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
