"""Tests for SpeechToTextService.

Covers text pass-through, mock mode, model ordering, fallback across
models, the all-models-failed placeholder, the silent-clip health check,
and MIME to extension mapping.
The OpenAI call is patched at ``_post_transcription``; no network access.
"""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.meetscribe.meetings.minutes.lexicon import ENGLISH, SWEDISH
from src.meetscribe.meetings.transcription import (
    FAILED_CONFIDENCE,
    MOCK_CONFIDENCE,
    STT_CONFIDENCE,
    TEXT_CONFIDENCE,
    SpeechToTextService,
    TranscriptionRequest,
    extension_for_mime,
    silent_wav,
)

AUDIO_B64 = base64.b64encode(b"fake-webm-bytes").decode()


def _audio_request(**overrides) -> TranscriptionRequest:
    defaults = {
        "audio_base64": AUDIO_B64,
        "mime_type": "audio/webm;codecs=opus",
        "language": "sv",
    }
    defaults.update(overrides)
    return TranscriptionRequest(**defaults)


# ── Text & Mock ──────────────────────────────────────────────────────────────


class TestTextAndMock:
    """Tests the paths that never call OpenAI."""

    @pytest.mark.asyncio
    async def test_text_passes_through_trimmed(self):
        service = SpeechToTextService(api_key="sk-test")
        result = await service.transcribe(TranscriptionRequest(text="  Hej alla  "))
        assert result.text == "Hej alla"
        assert result.confidence == TEXT_CONFIDENCE
        assert result.provider == "text"

    @pytest.mark.asyncio
    async def test_text_wins_over_audio(self):
        service = SpeechToTextService(api_key="sk-test")
        with patch.object(service, "_post_transcription", new_callable=AsyncMock) as post:
            result = await service.transcribe(_audio_request(text="Skrivet"))
        assert result.provider == "text"
        post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mock_flag_returns_placeholder(self):
        service = SpeechToTextService(api_key="sk-test", use_mock=True)
        result = await service.transcribe(_audio_request())
        assert result.text == SWEDISH.mock_transcription
        assert result.confidence == MOCK_CONFIDENCE
        assert result.provider == "mock_stt"

    @pytest.mark.asyncio
    async def test_missing_api_key_forces_mock(self):
        service = SpeechToTextService(api_key="")
        result = await service.transcribe(_audio_request(language="en"))
        assert result.text == ENGLISH.mock_transcription
        assert result.provider == "mock_stt"


# ── OpenAI Fallback ──────────────────────────────────────────────────────────


class TestModelFallback:
    """Tests trying each configured model in turn."""

    def test_configured_model_tried_first_without_duplicates(self):
        service = SpeechToTextService(api_key="sk-test", model="whisper-1")
        assert service.models == ["whisper-1", "gpt-4o-transcribe"]

    def test_default_models(self):
        assert SpeechToTextService(api_key="sk-test").models == [
            "gpt-4o-transcribe",
            "whisper-1",
        ]

    @pytest.mark.asyncio
    async def test_first_model_success(self):
        service = SpeechToTextService(api_key="sk-test")
        with patch.object(
            service, "_post_transcription", new=AsyncMock(return_value="Vi börjar nu")
        ) as post:
            result = await service.transcribe(_audio_request())

        assert result.text == "Vi börjar nu"
        assert result.confidence == STT_CONFIDENCE
        assert result.provider == "openai_stt"
        args = post.await_args.args
        assert args[0] == b"fake-webm-bytes"
        assert args[1] == "chunk.webm"
        assert args[3] == "gpt-4o-transcribe"

    @pytest.mark.asyncio
    async def test_falls_back_to_next_model(self):
        service = SpeechToTextService(api_key="sk-test")
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        error = httpx.HTTPStatusError(
            "400 Bad Request",
            request=request,
            response=httpx.Response(400, request=request),
        )
        with patch.object(
            service,
            "_post_transcription",
            new=AsyncMock(side_effect=[error, "Andra modellen"]),
        ) as post:
            result = await service.transcribe(_audio_request())

        assert result.text == "Andra modellen"
        assert post.await_count == 2
        assert post.await_args_list[1].args[3] == "whisper-1"

    @pytest.mark.asyncio
    async def test_empty_text_moves_to_next_model(self):
        service = SpeechToTextService(api_key="sk-test")
        with patch.object(
            service,
            "_post_transcription",
            new=AsyncMock(side_effect=["", "Till slut"]),
        ):
            result = await service.transcribe(_audio_request())
        assert result.text == "Till slut"

    @pytest.mark.asyncio
    async def test_all_models_fail_returns_low_confidence_notice(self):
        service = SpeechToTextService(api_key="sk-test")
        with patch.object(
            service,
            "_post_transcription",
            new=AsyncMock(side_effect=httpx.ConnectError("unreachable")),
        ):
            result = await service.transcribe(_audio_request())

        assert result.confidence == FAILED_CONFIDENCE
        assert result.provider == "mock_stt"
        assert result.text.startswith(SWEDISH.mock_transcription)
        assert "Fel:" in result.text
        assert "unreachable" in result.text


# ── Health Check ─────────────────────────────────────────────────────────────


class TestCheckHealth:
    """Tests the silent-clip transcription check."""

    def test_silent_wav_header(self):
        audio = silent_wav()
        assert audio[:4] == b"RIFF"
        assert audio[8:12] == b"WAVE"
        assert len(audio) == 44 + 16000 * 2
        assert set(audio[44:]) == {0}

    @pytest.mark.asyncio
    async def test_missing_key(self):
        result = await SpeechToTextService().check_health()
        assert result == {"ok": False, "reason": "OPENAI_API_KEY missing"}

    @pytest.mark.asyncio
    async def test_success_uses_transcription_call(self):
        service = SpeechToTextService(api_key="sk-test", model="whisper-1", use_mock=True)
        with patch.object(
            service, "_post_transcription", new=AsyncMock(return_value="")
        ) as post:
            result = await service.check_health()

        assert result == {"ok": True, "model": "whisper-1", "text_preview": ""}
        args = post.await_args.args
        assert args[0][:4] == b"RIFF"
        assert args[1:] == ("silence.wav", "audio/wav", "whisper-1", "sv")

    @pytest.mark.asyncio
    async def test_rejected_by_provider(self):
        service = SpeechToTextService(api_key="sk-bad")
        request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
        error = httpx.HTTPStatusError(
            "401 Unauthorized",
            request=request,
            response=httpx.Response(401, request=request, text="invalid api key"),
        )
        with patch.object(service, "_post_transcription", new=AsyncMock(side_effect=error)):
            result = await service.check_health()

        assert result["ok"] is False
        assert result["status"] == 401
        assert result["body_preview"] == "invalid api key"
        assert result["model"] == "gpt-4o-transcribe"

    @pytest.mark.asyncio
    async def test_unreachable_provider(self):
        service = SpeechToTextService(api_key="sk-test")
        with patch.object(
            service,
            "_post_transcription",
            new=AsyncMock(side_effect=httpx.ConnectError("unreachable")),
        ):
            result = await service.check_health()

        assert result == {"ok": False, "model": "gpt-4o-transcribe", "reason": "unreachable"}


# ── MIME Mapping ─────────────────────────────────────────────────────────────


class TestExtensionForMime:
    @pytest.mark.parametrize(
        ("mime", "expected"),
        [
            ("audio/webm;codecs=opus", "webm"),
            ("audio/wav", "wav"),
            ("audio/x-wav", "wav"),
            ("audio/mpeg", "mp3"),
            ("audio/mp3", "mp3"),
            ("audio/ogg", "ogg"),
            ("application/octet-stream", "audio"),
            (None, "audio"),
        ],
    )
    def test_mapping(self, mime, expected):
        assert extension_for_mime(mime) == expected
