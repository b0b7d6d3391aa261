"""Speech-to-text for incoming meeting chunks.

SpeechToTextService turns one chunk into text plus a confidence score.
Typed text passes straight through; audio goes to the OpenAI transcription
endpoint, trying each configured model in turn. Backend failures never
raise: the caller gets a low-confidence placeholder line instead, so a
flaky STT provider degrades a meeting transcript but never stops it.
"""

from __future__ import annotations

import base64
import binascii
import io
import wave

import httpx
import structlog
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.meetscribe.meetings.minutes.lexicon import get_lexicon

logger = structlog.get_logger(__name__)

OPENAI_TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"
FALLBACK_MODELS = ("gpt-4o-transcribe", "whisper-1")

TEXT_CONFIDENCE = 0.99
MOCK_CONFIDENCE = 0.35
STT_CONFIDENCE = 0.9
FAILED_CONFIDENCE = 0.2

# Transport errors only; an HTTP error status moves on to the next model
_stt_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class TranscriptionRequest(BaseModel):
    """One chunk to transcribe; at least one of text/audio is set."""

    text: str | None = None
    audio_base64: str | None = None
    mime_type: str | None = None
    language: str = "sv"


class TranscriptionResult(BaseModel):
    text: str
    confidence: float
    provider: str


def extension_for_mime(mime_type: str | None) -> str:
    """File extension the transcription API should see for a MIME type."""
    mime = (mime_type or "").lower()
    if "webm" in mime:
        return "webm"
    if "wav" in mime:
        return "wav"
    if "mpeg" in mime or "mp3" in mime:
        return "mp3"
    if "ogg" in mime:
        return "ogg"
    return "audio"


def silent_wav(duration_seconds: int = 1, sample_rate: int = 16000) -> bytes:
    """Mono 16-bit PCM WAV of silence, used to exercise the STT endpoint."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(b"\x00\x00" * duration_seconds * sample_rate)
    return buffer.getvalue()


class SpeechToTextService:
    """Transcribes text or base64 audio chunks.

    Args:
        api_key: OpenAI API key; empty forces mock mode.
        model: Preferred transcription model, tried before the fallbacks.
        timeout: Per-request timeout in seconds.
        use_mock: Return placeholders for audio without calling OpenAI.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        timeout: float = 25.0,
        use_mock: bool = False,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._use_mock = use_mock or not api_key
        models = [model] if model else []
        models.extend(m for m in FALLBACK_MODELS if m not in models)
        self._models = models

    @property
    def models(self) -> list[str]:
        return list(self._models)

    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResult:
        """Transcribe one chunk.

        Args:
            request: Text or audio payload plus the meeting language.

        Returns:
            TranscriptionResult. Never raises for provider failures.
        """
        if request.text and request.text.strip():
            return TranscriptionResult(
                text=request.text.strip(),
                confidence=TEXT_CONFIDENCE,
                provider="text",
            )

        lexicon = get_lexicon(request.language)
        if self._use_mock or not request.audio_base64:
            return TranscriptionResult(
                text=lexicon.mock_transcription,
                confidence=MOCK_CONFIDENCE,
                provider="mock_stt",
            )

        try:
            audio = base64.b64decode(request.audio_base64, validate=False)
        except (binascii.Error, ValueError) as exc:
            logger.warning("stt_audio_decode_failed", error=str(exc))
            return self._failed(lexicon.mock_transcription, str(exc))

        filename = f"chunk.{extension_for_mime(request.mime_type)}"
        errors: list[str] = []
        for model in self._models:
            try:
                text = await self._post_transcription(
                    audio, filename, request.mime_type, model, request.language
                )
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "stt_model_failed",
                    model=model,
                    error=str(exc),
                )
                errors.append(f"{model}: {exc}")
                continue

            if text:
                logger.debug("stt_transcribed", model=model, chars=len(text))
                return TranscriptionResult(
                    text=text,
                    confidence=STT_CONFIDENCE,
                    provider="openai_stt",
                )
            errors.append(f"{model}: empty transcription")

        logger.error("stt_all_models_failed", models=self._models)
        return self._failed(lexicon.mock_transcription, "; ".join(errors))

    async def check_health(self) -> dict:
        """Send one second of silence to the preferred model.

        Runs regardless of mock mode so operators can verify the key before
        turning mock mode off.

        Returns:
            Dict with ``ok`` plus ``model`` and a preview of the response
            text, the upstream ``status`` and ``body_preview``, or a
            ``reason``.
        """
        if not self._api_key:
            return {"ok": False, "reason": "OPENAI_API_KEY missing"}

        model = self._models[0]
        try:
            text = await self._post_transcription(
                silent_wav(), "silence.wav", "audio/wav", model, "sv"
            )
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "stt_health_check_failed",
                model=model,
                status=exc.response.status_code,
            )
            return {
                "ok": False,
                "model": model,
                "status": exc.response.status_code,
                "body_preview": exc.response.text[:400],
            }
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("stt_health_check_failed", model=model, error=str(exc))
            return {"ok": False, "model": model, "reason": str(exc)}

        return {"ok": True, "model": model, "text_preview": text[:200]}

    @staticmethod
    def _failed(notice: str, detail: str) -> TranscriptionResult:
        return TranscriptionResult(
            text=f"{notice} Fel: {detail}" if detail else notice,
            confidence=FAILED_CONFIDENCE,
            provider="mock_stt",
        )

    @_stt_retry
    async def _post_transcription(
        self,
        audio: bytes,
        filename: str,
        mime_type: str | None,
        model: str,
        language: str,
    ) -> str:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                OPENAI_TRANSCRIPTION_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                data={"model": model, "language": language.split("-", 1)[0]},
                files={"file": (filename, audio, mime_type or "application/octet-stream")},
            )
            response.raise_for_status()
            payload = response.json()
        return str(payload.get("text") or "").strip()
