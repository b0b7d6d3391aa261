"""GoogleDocsExporter -- push finalized meeting notes to Google Docs.

Builds one plain-text document per export containing the meeting header,
participants, summary, key topics, every extracted category, the protocol
draft and the raw transcript, then creates a Google Doc with it.

All Google API calls are wrapped in asyncio.to_thread() to avoid blocking
the event loop. Service instances are cached per API to avoid rebuilding
credentials on every export.

When mock mode is enabled, or no service account is configured, the body
is written to ``<export_dir>/<meeting_id>.txt`` instead and a
``mock://`` URL is returned, so the full finalize flow works locally.

Exceptions propagate: the orchestrator treats any raise as a failed
attempt and retries.

Exports:
    GoogleDocsExporter: Export gateway implementation.
    DocumentExportRequest: Input bundle for one export.
    DocumentExportResult: External id/url returned by the backend.
    build_document_body: Plain-text document renderer.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from src.meetscribe.meetings.schemas import (
    MeetingArtifacts,
    Meeting,
    Participant,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)

DOCS_SCOPES = [
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/drive",
]


class DocumentExportRequest(BaseModel):
    """Everything the document backend needs for one meeting."""

    meeting: Meeting
    participants: list[Participant] = Field(default_factory=list)
    artifacts: MeetingArtifacts
    segments: list[TranscriptSegment] = Field(default_factory=list)


class DocumentExportResult(BaseModel):
    """Result from a successful export."""

    external_id: str
    url: str
    mode: Literal["google", "mock"]
    local_path: str | None = None


# ── Document Body ────────────────────────────────────────────────────────────


def _format_transcript(segments: list[TranscriptSegment]) -> str:
    if not segments:
        return "(Inga segment tillgängliga)"
    return "\n".join(
        f"[{segment.timestamp_ms // 1000:04d}s] {segment.speaker_label}: {segment.text}"
        for segment in segments
    )


def _bullets(lines: list[str], placeholder: str) -> str:
    return "\n".join(f"- {line}" for line in lines) if lines else placeholder


def build_document_body(request: DocumentExportRequest) -> str:
    """Render the exported document as plain text.

    Args:
        request: Meeting, participants, artifacts and transcript.

    Returns:
        Document body with one ``=== Section ===`` block per part.
    """
    meeting = request.meeting
    artifacts = request.artifacts

    participants = (
        ", ".join(p.name for p in request.participants)
        if request.participants
        else "Ej specificerade"
    )
    ended = (
        meeting.ended_at.strftime("%Y-%m-%d %H:%M UTC")
        if meeting.ended_at
        else "Pågående"
    )

    action_lines = []
    for item in artifacts.action_items:
        owner = f" (ägare: {item.owner})" if item.owner else ""
        due = f" (deadline: {item.due_date})" if item.due_date else ""
        action_lines.append(f"{item.text}{owner}{due}")

    return "\n".join(
        [
            f"Möte: {meeting.title}",
            f"Start: {meeting.started_at.strftime('%Y-%m-%d %H:%M UTC')}",
            f"Slut: {ended}",
            f"Deltagare: {participants}",
            "",
            "=== Sammanfattning ===",
            artifacts.summary,
            "",
            "=== Nyckelämnen ===",
            _bullets(artifacts.key_topics, "- Inga nyckelämnen identifierades."),
            "",
            "=== Beslut ===",
            _bullets([d.text for d in artifacts.decisions], "- Inga beslut identifierades."),
            "",
            "=== Action items ===",
            _bullets(action_lines, "- Inga action items identifierades."),
            "",
            "=== Öppna frågor ===",
            _bullets([q.text for q in artifacts.open_questions], "- Inga öppna frågor identifierades."),
            "",
            "=== Risker ===",
            _bullets([r.text for r in artifacts.risks], "- Inga risker identifierades."),
            "",
            "=== Protokollutkast ===",
            artifacts.protocol_draft,
            "",
            "=== Rå transkribering ===",
            _format_transcript(request.segments),
        ]
    )


# ── Exporter ─────────────────────────────────────────────────────────────────


class GoogleDocsExporter:
    """Creates a Google Doc per export using a service account.

    Args:
        service_account_file: Path to the service account JSON key; None
            forces mock mode.
        drive_folder_id: Optional Drive folder to move new documents into.
        export_dir: Directory for mock-mode output files.
        use_mock: Always write local files instead of calling Google.
    """

    def __init__(
        self,
        service_account_file: str | None = None,
        drive_folder_id: str = "",
        export_dir: str | Path = ".exports",
        use_mock: bool = False,
    ) -> None:
        self._service_account_file = service_account_file
        self._drive_folder_id = drive_folder_id
        self._export_dir = Path(export_dir)
        self._use_mock = use_mock or not service_account_file
        self._service_cache: dict[str, Any] = {}

    @property
    def mock_mode(self) -> bool:
        return self._use_mock

    async def export_meeting(self, request: DocumentExportRequest) -> DocumentExportResult:
        """Export a meeting's notes.

        Args:
            request: Meeting, participants, artifacts and segments.

        Returns:
            DocumentExportResult with external id and URL.

        Raises:
            Exception: Any backend or filesystem error (caller retries).
        """
        body = build_document_body(request)
        if self._use_mock:
            return await self._export_local(body, request.meeting.id)
        return await self._export_google(body, request.meeting)

    # ── Mock ─────────────────────────────────────────────────────────────

    async def _export_local(self, body: str, meeting_id: str) -> DocumentExportResult:
        output_path = self._export_dir / f"{meeting_id}.txt"

        def _write() -> None:
            self._export_dir.mkdir(parents=True, exist_ok=True)
            output_path.write_text(body, encoding="utf-8")

        await asyncio.to_thread(_write)
        logger.info(
            "document_exported_locally",
            meeting_id=meeting_id,
            path=str(output_path),
        )
        return DocumentExportResult(
            external_id=f"mock-{meeting_id}",
            url=f"mock://google-docs/{meeting_id}",
            mode="mock",
            local_path=str(output_path),
        )

    # ── Google ───────────────────────────────────────────────────────────

    def _get_service(self, api: str, version: str) -> Any:
        """Get a cached Google API service instance.

        Imports are local so the google client libraries are only loaded
        when real export is configured.
        """
        cache_key = f"{api}:{version}"
        if cache_key not in self._service_cache:
            from google.oauth2 import service_account
            from googleapiclient.discovery import build

            logger.info("building_google_service", api=api, version=version)
            credentials = service_account.Credentials.from_service_account_file(
                self._service_account_file,
                scopes=DOCS_SCOPES,
            )
            self._service_cache[cache_key] = build(
                api, version, credentials=credentials, cache_discovery=False
            )
        return self._service_cache[cache_key]

    async def _export_google(self, body: str, meeting: Meeting) -> DocumentExportResult:
        docs = self._get_service("docs", "v1")
        title = f"{meeting.title} - {meeting.started_at.strftime('%Y-%m-%d')}"

        def _create() -> dict:
            return docs.documents().create(body={"title": title}).execute()

        created = await asyncio.to_thread(_create)
        doc_id = created.get("documentId")
        if not doc_id:
            raise RuntimeError("Google Docs returned no document ID")

        def _insert() -> dict:
            return (
                docs.documents()
                .batchUpdate(
                    documentId=doc_id,
                    body={
                        "requests": [
                            {"insertText": {"location": {"index": 1}, "text": body}}
                        ]
                    },
                )
                .execute()
            )

        await asyncio.to_thread(_insert)

        if self._drive_folder_id:
            drive = self._get_service("drive", "v3")

            def _move() -> dict:
                return (
                    drive.files()
                    .update(
                        fileId=doc_id,
                        addParents=self._drive_folder_id,
                        fields="id, parents",
                    )
                    .execute()
                )

            await asyncio.to_thread(_move)

        logger.info(
            "document_exported",
            meeting_id=meeting.id,
            document_id=doc_id,
            folder_id=self._drive_folder_id or None,
        )
        return DocumentExportResult(
            external_id=doc_id,
            url=f"https://docs.google.com/document/d/{doc_id}/edit",
            mode="google",
        )
