"""ArtifactExtractor -- heuristic meeting notes from a finished transcript.

Converts an ordered list of transcript segments into:
1. Key topics (frequency-ranked tokens, max 8)
2. Summary lines (longest utterances, max 5)
3. Decisions, action items (owner + due date), open questions, risks
4. A fixed-section protocol draft rendered as Markdown

Classification is keyword/pattern based per transcript language (see
lexicon.py); there is no language model involved. The extractor is a pure
function of its inputs: no I/O, and item ids derive from segment ids, so
equal input produces equal output.

Exports:
    ArtifactExtractor: Main extraction service.
    normalize_line: Whitespace normalization used for rendering and dedup.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TypeVar

import structlog

from src.meetscribe.meetings.minutes.lexicon import (
    ISO_DATE_RE,
    SLASH_DATE_RE,
    Lexicon,
    get_lexicon,
)
from src.meetscribe.meetings.schemas import (
    ActionItem,
    ArtifactsPayload,
    Decision,
    ExtractedItem,
    Meeting,
    OpenQuestion,
    Participant,
    RiskItem,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

MAX_KEY_TOPICS = 8
MAX_SUMMARY_LINES = 5
SUMMARY_MIN_CHARS = 30  # strictly longer than this to be preferred
MIN_TOPIC_TOKEN_CHARS = 4

_WHITESPACE_RE = re.compile(r"\s+")
_NON_TOKEN_RE = re.compile(r"[^\w\s-]|_")

_ItemT = TypeVar("_ItemT", bound=ExtractedItem)


# ── Module-Level Helpers ─────────────────────────────────────────────────────


def normalize_line(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def _render_summary_line(segment: TranscriptSegment) -> str:
    return f"- {segment.speaker_label}: {normalize_line(segment.text)}"


def _push_unique(target: list[_ItemT], candidate: _ItemT) -> None:
    """Append unless an item with the same text (case-insensitive) exists.

    A duplicate contributes its segment references to the kept item.
    """
    key = candidate.text.lower()
    for existing in target:
        if existing.text.lower() == key:
            for ref in candidate.references:
                if ref not in existing.references:
                    existing.references.append(ref)
            return
    target.append(candidate)


class ArtifactExtractor:
    """Generates structured meeting notes from transcript segments.

    Stateless; one instance can be shared across meetings and tasks.
    """

    def generate(
        self,
        meeting: Meeting,
        participants: Sequence[Participant],
        segments: Sequence[TranscriptSegment],
    ) -> ArtifactsPayload:
        """Derive all artifacts for a meeting.

        Args:
            meeting: Meeting metadata (title, start time, language).
            participants: Meeting participants, used for owner detection.
            segments: Transcript segments in arrival order.

        Returns:
            ArtifactsPayload with summary, draft, topics and the four
            extracted item categories.
        """
        lexicon = get_lexicon(meeting.language)

        summary_lines = self.summary_lines(segments)
        key_topics = self.key_topics(segments, lexicon)
        decisions, action_items, open_questions, risks = self._classify(
            segments, participants, lexicon
        )

        protocol_draft = self.render_draft(
            meeting,
            lexicon,
            summary_lines=summary_lines,
            key_topics=key_topics,
            decisions=decisions,
            action_items=action_items,
            open_questions=open_questions,
            risks=risks,
        )

        logger.info(
            "artifacts_extracted",
            meeting_id=meeting.id,
            segments=len(segments),
            decisions=len(decisions),
            action_items=len(action_items),
            open_questions=len(open_questions),
            risks=len(risks),
            key_topics=len(key_topics),
        )

        return ArtifactsPayload(
            summary="\n".join(summary_lines),
            protocol_draft=protocol_draft,
            key_topics=key_topics,
            decisions=decisions,
            action_items=action_items,
            open_questions=open_questions,
            risks=risks,
        )

    # ── Topics & Summary ─────────────────────────────────────────────────

    @staticmethod
    def key_topics(
        segments: Sequence[TranscriptSegment], lexicon: Lexicon
    ) -> list[str]:
        """Most frequent content tokens, ties broken by first appearance."""
        frequencies: dict[str, int] = {}
        for segment in segments:
            cleaned = _NON_TOKEN_RE.sub(" ", segment.text.lower())
            for token in cleaned.split():
                if len(token) < MIN_TOPIC_TOKEN_CHARS or token in lexicon.stopwords:
                    continue
                frequencies[token] = frequencies.get(token, 0) + 1

        # dict preserves first-seen order and sorted() is stable
        ranked = sorted(frequencies.items(), key=lambda item: -item[1])
        return [token for token, _ in ranked[:MAX_KEY_TOPICS]]

    @staticmethod
    def summary_lines(segments: Sequence[TranscriptSegment]) -> list[str]:
        """Longest substantive utterances, else the opening segments."""
        ranked = sorted(
            (s for s in segments if len(s.text) > SUMMARY_MIN_CHARS),
            key=lambda s: -len(s.text),
        )[:MAX_SUMMARY_LINES]
        if ranked:
            return [_render_summary_line(s) for s in ranked]
        return [_render_summary_line(s) for s in segments[:MAX_SUMMARY_LINES]]

    # ── Classification ───────────────────────────────────────────────────

    def _classify(
        self,
        segments: Sequence[TranscriptSegment],
        participants: Sequence[Participant],
        lexicon: Lexicon,
    ) -> tuple[list[Decision], list[ActionItem], list[OpenQuestion], list[RiskItem]]:
        """Single pass over the transcript; categories are independent."""
        decisions: list[Decision] = []
        action_items: list[ActionItem] = []
        open_questions: list[OpenQuestion] = []
        risks: list[RiskItem] = []

        for segment in segments:
            line = normalize_line(segment.text)
            refs = [segment.id]

            if line and lexicon.decision_re.search(line):
                _push_unique(decisions, Decision(id=f"dec-{segment.id}", text=line, references=list(refs)))

            if line and (lexicon.action_re.search(line) or lexicon.need_re.search(line)):
                _push_unique(
                    action_items,
                    ActionItem(
                        id=f"act-{segment.id}",
                        text=line,
                        owner=self.find_owner(line, participants, lexicon),
                        due_date=self.find_due_date(line, lexicon),
                        references=list(refs),
                    ),
                )

            if line and ("?" in line or lexicon.question_re.search(line)):
                _push_unique(open_questions, OpenQuestion(id=f"q-{segment.id}", text=line, references=list(refs)))

            if line and lexicon.risk_re.search(line):
                _push_unique(risks, RiskItem(id=f"risk-{segment.id}", text=line, references=list(refs)))

            if segment.is_overlapping:
                _push_unique(
                    risks,
                    RiskItem(
                        id=f"risk-overlap-{segment.id}",
                        text=lexicon.overlap_risk.format(seconds=segment.timestamp_ms // 1000),
                        references=list(refs),
                    ),
                )

        return decisions, action_items, open_questions, risks

    @staticmethod
    def find_owner(
        line: str, participants: Sequence[Participant], lexicon: Lexicon
    ) -> str | None:
        """A participant named anywhere in the line, else ``<Name> ska/should``."""
        lowered = line.lower()
        for participant in participants:
            if participant.name and participant.name.lower() in lowered:
                return participant.name

        match = lexicon.owner_re.match(line)
        if match:
            return match.group(1).strip() or None
        return None

    @staticmethod
    def find_due_date(line: str, lexicon: Lexicon) -> str | None:
        """First ISO date, else slash date, else a week number."""
        iso = ISO_DATE_RE.search(line)
        if iso:
            return iso.group(1)

        slash = SLASH_DATE_RE.search(line)
        if slash:
            return slash.group(1)

        week = lexicon.week_re.search(line)
        if week:
            return f"{lexicon.week_label} {int(week.group(1))}"
        return None

    # ── Rendering ────────────────────────────────────────────────────────

    @staticmethod
    def render_draft(
        meeting: Meeting,
        lexicon: Lexicon,
        *,
        summary_lines: list[str],
        key_topics: list[str],
        decisions: list[Decision],
        action_items: list[ActionItem],
        open_questions: list[OpenQuestion],
        risks: list[RiskItem],
    ) -> str:
        """Render the fixed-section protocol draft.

        Every section header is always present; an empty section gets a
        single placeholder line.
        """

        def bullets(items: Sequence[ExtractedItem], placeholder: str) -> list[str]:
            return [f"- {item.text}" for item in items] or [placeholder]

        def action_line(item: ActionItem) -> str:
            owner = f" | {lexicon.owner_label}: {item.owner}" if item.owner else ""
            due = f" | {lexicon.due_label}: {item.due_date}" if item.due_date else ""
            return f"- {item.text}{owner}{due}"

        started = meeting.started_at.strftime("%Y-%m-%d %H:%M UTC")

        sections = [
            f"# {lexicon.draft_title}: {meeting.title}",
            "",
            f"- {lexicon.draft_start}: {started}",
            f"- {lexicon.draft_language}: {meeting.language}",
            "",
            f"## {lexicon.heading_summary}",
            *(summary_lines or [lexicon.none_summary]),
            "",
            f"## {lexicon.heading_topics}",
            *([f"- {topic}" for topic in key_topics] or [lexicon.none_topics]),
            "",
            f"## {lexicon.heading_decisions}",
            *bullets(decisions, lexicon.none_decisions),
            "",
            f"## {lexicon.heading_actions}",
            *([action_line(item) for item in action_items] or [lexicon.none_actions]),
            "",
            f"## {lexicon.heading_questions}",
            *bullets(open_questions, lexicon.none_questions),
            "",
            f"## {lexicon.heading_risks}",
            *bullets(risks, lexicon.none_risks),
        ]
        return "\n".join(sections)
