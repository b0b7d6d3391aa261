"""Speaker attribution for incoming transcript chunks.

Provides SpeakerMapper, which resolves an utterance to a meeting
participant using an ordered list of independent rules. The first rule
that produces a participant wins; the order encodes signal reliability,
most explicit first:

1. HINT        -- caller names the participant explicitly
2. MEMORY      -- diarization label already bound earlier in this meeting
3. NAME_PREFIX -- text starts with "<Name>:"
4. EMBEDDING   -- voice embedding cosine similarity >= 0.82
5. FALLBACK    -- no participant; localized "unknown speaker" label

Rules 1, 3 and 4 bind the diarization label (when supplied) so later
chunks from the same cluster resolve through MEMORY. Bindings live in an
AttributionMemory owned by the caller and torn down per meeting.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

import numpy as np
import structlog

from src.meetscribe.meetings.minutes.lexicon import NAME_CHARS, get_lexicon
from src.meetscribe.meetings.schemas import Participant

logger = structlog.get_logger(__name__)

# Below this similarity an embedding is treated as no match, not a weak match
EMBEDDING_MATCH_THRESHOLD = 0.82

_NAME_PREFIX_RE = re.compile(rf"^({NAME_CHARS}{{2,40}}):")


class AttributionSource(str, Enum):
    """Which rule produced an attribution."""

    HINT = "hint"
    MEMORY = "memory"
    NAME_PREFIX = "name_prefix"
    EMBEDDING = "embedding"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class SpeakerAttribution:
    """Result of mapping one chunk to a speaker."""

    participant_id: str | None
    speaker_label: str
    source: AttributionSource


@dataclass(frozen=True)
class _MappingInput:
    meeting_id: str
    participants: Sequence[Participant]
    text: str
    speaker_hint_id: str | None
    diarization_label: str | None
    voice_embedding: Sequence[float] | None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns -1.0 (never selectable) for empty, mismatched-length or
    zero-norm vectors.
    """
    if len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return -1.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return -1.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class AttributionMemory:
    """Diarization label -> participant bindings, scoped per meeting.

    Process-local. Must be shared or externalized if several instances
    ingest chunks for the same meeting.
    """

    def __init__(self) -> None:
        self._bindings: dict[str, dict[str, str]] = {}

    def bind(self, meeting_id: str, label: str, participant_id: str) -> None:
        self._bindings.setdefault(meeting_id, {})[label] = participant_id

    def lookup(self, meeting_id: str, label: str) -> str | None:
        return self._bindings.get(meeting_id, {}).get(label)

    def forget(self, meeting_id: str) -> None:
        """Drop every binding for a meeting (finalized or abandoned)."""
        removed = self._bindings.pop(meeting_id, None)
        if removed:
            logger.debug(
                "attribution_memory_cleared",
                meeting_id=meeting_id,
                labels=len(removed),
            )

    def labels(self, meeting_id: str) -> dict[str, str]:
        return dict(self._bindings.get(meeting_id, {}))

    def __contains__(self, meeting_id: object) -> bool:
        return meeting_id in self._bindings


class SpeakerMapper:
    """Attributes utterances to participants with per-meeting memory.

    Args:
        memory: Binding store; a private one is created when omitted.
        embedding_threshold: Minimum cosine similarity for an embedding match.
    """

    def __init__(
        self,
        memory: AttributionMemory | None = None,
        embedding_threshold: float = EMBEDDING_MATCH_THRESHOLD,
    ) -> None:
        self.memory = memory if memory is not None else AttributionMemory()
        self._embedding_threshold = embedding_threshold
        self._rules: list[
            tuple[AttributionSource, Callable[[_MappingInput], Participant | None]]
        ] = [
            (AttributionSource.HINT, self._match_hint),
            (AttributionSource.MEMORY, self._match_memory),
            (AttributionSource.NAME_PREFIX, self._match_name_prefix),
            (AttributionSource.EMBEDDING, self._match_embedding),
        ]

    def map(
        self,
        meeting_id: str,
        participants: Sequence[Participant],
        text: str,
        speaker_hint_id: str | None = None,
        diarization_label: str | None = None,
        voice_embedding: Sequence[float] | None = None,
        language: str | None = None,
    ) -> SpeakerAttribution:
        """Resolve the speaker of one chunk.

        Args:
            meeting_id: Meeting the chunk belongs to (memory scope).
            participants: Candidate participants of the meeting.
            text: Transcribed chunk text.
            speaker_hint_id: Explicit participant id from the client.
            diarization_label: Opaque speaker-cluster tag for this chunk.
            voice_embedding: Precomputed voice embedding for this chunk.
            language: Meeting language, used for the fallback label.

        Returns:
            SpeakerAttribution with participant id (or None), a non-empty
            label, and the rule that decided it.
        """
        mapping = _MappingInput(
            meeting_id=meeting_id,
            participants=participants,
            text=text,
            speaker_hint_id=speaker_hint_id,
            diarization_label=diarization_label,
            voice_embedding=voice_embedding,
        )

        for source, rule in self._rules:
            participant = rule(mapping)
            if participant is None:
                continue
            if source is not AttributionSource.MEMORY and diarization_label:
                self.memory.bind(meeting_id, diarization_label, participant.id)
            logger.debug(
                "speaker_attributed",
                meeting_id=meeting_id,
                participant_id=participant.id,
                source=source.value,
                diarization_label=diarization_label,
            )
            return SpeakerAttribution(
                participant_id=participant.id,
                speaker_label=participant.name,
                source=source,
            )

        return SpeakerAttribution(
            participant_id=None,
            speaker_label=get_lexicon(language).unknown_speaker,
            source=AttributionSource.FALLBACK,
        )

    def forget_meeting(self, meeting_id: str) -> None:
        self.memory.forget(meeting_id)

    # ── Rules ────────────────────────────────────────────────────────────

    @staticmethod
    def _match_hint(mapping: _MappingInput) -> Participant | None:
        if not mapping.speaker_hint_id:
            return None
        for participant in mapping.participants:
            if participant.id == mapping.speaker_hint_id:
                return participant
        return None

    def _match_memory(self, mapping: _MappingInput) -> Participant | None:
        if not mapping.diarization_label:
            return None
        remembered = self.memory.lookup(mapping.meeting_id, mapping.diarization_label)
        if remembered is None:
            return None
        for participant in mapping.participants:
            if participant.id == remembered:
                return participant
        return None

    @staticmethod
    def _match_name_prefix(mapping: _MappingInput) -> Participant | None:
        match = _NAME_PREFIX_RE.match(mapping.text.strip())
        if not match:
            return None
        prefix = match.group(1).strip().lower()
        if not prefix:
            return None

        for participant in mapping.participants:
            if participant.name.lower() == prefix:
                return participant
        for participant in mapping.participants:
            if participant.name.lower().startswith(prefix):
                return participant
        return None

    def _match_embedding(self, mapping: _MappingInput) -> Participant | None:
        if not mapping.voice_embedding:
            return None

        best: Participant | None = None
        best_score = -1.0
        for participant in mapping.participants:
            profile = participant.voice_profile
            if profile is None or not profile.embedding:
                continue
            score = cosine_similarity(mapping.voice_embedding, profile.embedding)
            if score > best_score:
                best_score = score
                best = participant

        if best is None or best_score < self._embedding_threshold:
            return None
        return best
