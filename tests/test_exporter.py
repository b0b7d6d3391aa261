"""Tests for the Google Docs exporter.

Covers the plain-text document body, mock-mode local export, and the
Google path with patched service objects (no real Google API calls).
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from src.meetscribe.meetings.minutes.exporter import (
    DocumentExportRequest,
    GoogleDocsExporter,
    build_document_body,
)
from src.meetscribe.meetings.schemas import (
    ActionItem,
    Decision,
    Meeting,
    MeetingArtifacts,
    Participant,
    TranscriptSegment,
)

STARTED = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
ENDED = datetime(2026, 3, 2, 10, 15, tzinfo=timezone.utc)


def _make_request(**overrides) -> DocumentExportRequest:
    meeting = Meeting(
        id="meeting-1",
        title="Produktmöte",
        started_at=STARTED,
        ended_at=ENDED,
        participant_ids=["p-anna"],
    )
    artifacts = MeetingArtifacts(
        meeting_id="meeting-1",
        summary="- Anna: Beslut att vi prioriterar API-förbättringen.",
        protocol_draft="# Protokollutkast: Produktmöte",
        key_topics=["api-förbättringen"],
        decisions=[Decision(id="dec-s1", text="Beslut att vi prioriterar API-förbättringen.")],
        action_items=[
            ActionItem(id="act-s2", text="Anna ska skriva specen", owner="Anna", due_date="vecka 12")
        ],
    )
    segments = [
        TranscriptSegment(
            id="s1",
            meeting_id="meeting-1",
            speaker_label="Anna",
            text="Beslut att vi prioriterar API-förbättringen.",
            confidence=0.99,
            timestamp_ms=65_000,
        )
    ]
    defaults = {
        "meeting": meeting,
        "participants": [Participant(id="p-anna", name="Anna")],
        "artifacts": artifacts,
        "segments": segments,
    }
    defaults.update(overrides)
    return DocumentExportRequest(**defaults)


# ── Document Body ────────────────────────────────────────────────────────────


class TestDocumentBody:
    """Tests the rendered export text."""

    def test_header_and_sections(self):
        body = build_document_body(_make_request())
        assert body.startswith("Möte: Produktmöte\nStart: 2026-03-02 09:00 UTC\n")
        assert "Slut: 2026-03-02 10:15 UTC" in body
        assert "Deltagare: Anna" in body
        for section in (
            "=== Sammanfattning ===",
            "=== Nyckelämnen ===",
            "=== Beslut ===",
            "=== Action items ===",
            "=== Öppna frågor ===",
            "=== Risker ===",
            "=== Protokollutkast ===",
            "=== Rå transkribering ===",
        ):
            assert section in body

    def test_action_item_owner_and_deadline(self):
        body = build_document_body(_make_request())
        assert "- Anna ska skriva specen (ägare: Anna) (deadline: vecka 12)" in body

    def test_transcript_lines(self):
        body = build_document_body(_make_request())
        assert "[0065s] Anna: Beslut att vi prioriterar API-förbättringen." in body

    def test_empty_parts_use_placeholders(self):
        request = _make_request(participants=[], segments=[])
        request.meeting.ended_at = None
        body = build_document_body(request)
        assert "Deltagare: Ej specificerade" in body
        assert "Slut: Pågående" in body
        assert "(Inga segment tillgängliga)" in body
        assert "- Inga öppna frågor identifierades." in body


# ── Mock Export ──────────────────────────────────────────────────────────────


class TestMockExport:
    """Tests local-file export used without a service account."""

    def test_no_service_account_means_mock(self, tmp_path):
        assert GoogleDocsExporter(export_dir=tmp_path).mock_mode is True
        assert (
            GoogleDocsExporter(service_account_file="key.json", export_dir=tmp_path).mock_mode
            is False
        )

    @pytest.mark.asyncio
    async def test_writes_body_to_export_dir(self, tmp_path):
        exporter = GoogleDocsExporter(export_dir=tmp_path / "exports", use_mock=True)
        request = _make_request()

        result = await exporter.export_meeting(request)

        assert result.mode == "mock"
        assert result.external_id == "mock-meeting-1"
        assert result.url == "mock://google-docs/meeting-1"
        written = (tmp_path / "exports" / "meeting-1.txt").read_text(encoding="utf-8")
        assert written == build_document_body(request)
        assert result.local_path == str(tmp_path / "exports" / "meeting-1.txt")


# ── Google Export ────────────────────────────────────────────────────────────


class TestGoogleExport:
    """Tests the Docs/Drive call sequence against mocked services."""

    @staticmethod
    def _services(doc_id: str | None = "doc-123"):
        docs = MagicMock()
        docs.documents.return_value.create.return_value.execute.return_value = (
            {"documentId": doc_id} if doc_id else {}
        )
        drive = MagicMock()
        return docs, drive

    @pytest.mark.asyncio
    async def test_creates_document_and_inserts_body(self, tmp_path):
        docs, drive = self._services()
        exporter = GoogleDocsExporter(service_account_file="key.json", export_dir=tmp_path)

        with patch.object(
            exporter,
            "_get_service",
            side_effect=lambda api, version: docs if api == "docs" else drive,
        ):
            result = await exporter.export_meeting(_make_request())

        assert result.mode == "google"
        assert result.external_id == "doc-123"
        assert result.url == "https://docs.google.com/document/d/doc-123/edit"

        docs.documents.return_value.create.assert_called_once_with(
            body={"title": "Produktmöte - 2026-03-02"}
        )
        batch_kwargs = docs.documents.return_value.batchUpdate.call_args.kwargs
        assert batch_kwargs["documentId"] == "doc-123"
        insert = batch_kwargs["body"]["requests"][0]["insertText"]
        assert insert["location"] == {"index": 1}
        assert insert["text"].startswith("Möte: Produktmöte")
        drive.files.assert_not_called()

    @pytest.mark.asyncio
    async def test_moves_into_drive_folder(self, tmp_path):
        docs, drive = self._services()
        exporter = GoogleDocsExporter(
            service_account_file="key.json",
            drive_folder_id="folder-9",
            export_dir=tmp_path,
        )

        with patch.object(
            exporter,
            "_get_service",
            side_effect=lambda api, version: docs if api == "docs" else drive,
        ):
            await exporter.export_meeting(_make_request())

        drive.files.return_value.update.assert_called_once_with(
            fileId="doc-123",
            addParents="folder-9",
            fields="id, parents",
        )

    @pytest.mark.asyncio
    async def test_missing_document_id_raises(self, tmp_path):
        docs, drive = self._services(doc_id=None)
        exporter = GoogleDocsExporter(service_account_file="key.json", export_dir=tmp_path)

        with patch.object(exporter, "_get_service", return_value=docs):
            with pytest.raises(RuntimeError, match="no document ID"):
                await exporter.export_meeting(_make_request())

        docs.documents.return_value.batchUpdate.assert_not_called()
