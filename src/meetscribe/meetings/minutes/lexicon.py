"""Per-language word lists, patterns and user-facing strings.

Swedish is the primary language and the fallback for unknown language
codes; English is supported for transcripts, headings and advisories.
Patterns are compiled once, case-insensitive, Unicode-aware.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# A speaker or owner name: letters, spaces, period, apostrophe, hyphen.
NAME_CHARS = r"(?:[^\W\d_]|[ .'-])"

ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
SLASH_DATE_RE = re.compile(r"\b(\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b")


@dataclass(frozen=True)
class Lexicon:
    """Everything language-specific the extractor and orchestrator need."""

    code: str
    unknown_speaker: str
    stopwords: frozenset[str]

    decision_re: re.Pattern[str]
    action_re: re.Pattern[str]
    need_re: re.Pattern[str]
    question_re: re.Pattern[str]
    risk_re: re.Pattern[str]
    owner_re: re.Pattern[str]
    week_re: re.Pattern[str]
    week_label: str

    overlap_risk: str  # formatted with seconds=
    default_title: str  # formatted with date=
    mock_transcription: str

    low_quality_advisory: str
    processing_message: str
    completed_exported: str
    completed_needs_attention: str
    export_failed_notice: str
    abandoned_message: str
    stream_connected: str

    draft_title: str
    draft_start: str
    draft_language: str
    heading_summary: str
    heading_topics: str
    heading_decisions: str
    heading_actions: str
    heading_questions: str
    heading_risks: str
    owner_label: str
    due_label: str
    none_summary: str
    none_topics: str
    none_decisions: str
    none_actions: str
    none_questions: str
    none_risks: str


def _ci(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


SWEDISH = Lexicon(
    code="sv",
    unknown_speaker="Okänd talare",
    stopwords=frozenset(
        {
            "att", "det", "som", "och", "för", "med", "inte", "är", "vi",
            "ni", "de", "han", "hon", "jag", "du", "på", "en", "ett",
            "till", "från", "har", "ska", "kan", "om", "hur", "var", "vad",
            "detta", "den", "sig", "då", "men", "så", "också", "eller",
            "hos", "inom", "mötet", "möte",
        }
    ),
    decision_re=_ci(r"\b(beslut|beslutar|vi bestämmer|godkänns)\b"),
    action_re=_ci(r"\b(action|att göra|todo|to-do|åtgärd|ska\s+[^.?!]{3,})\b"),
    need_re=_ci(r"\bvi behöver\b"),
    question_re=_ci(r"\b(fråga|oklart|behöver utredas)\b"),
    risk_re=_ci(r"\b(risk|problem|blocker|osäkerhet|beroende)\b"),
    owner_re=_ci(rf"^({NAME_CHARS}{{2,40}}) ska\b"),
    week_re=_ci(r"\bv(?:ecka)?\s?(\d{1,2})\b"),
    week_label="vecka",
    overlap_risk="Överlappande tal upptäcktes kring tidsstämpel {seconds}s.",
    default_title="Möte {date}",
    mock_transcription=(
        "[Ljud mottaget. Lägg till OPENAI_API_KEY och sätt USE_MOCK_STT=false "
        "för riktig transkribering.]"
    ),
    low_quality_advisory="Låg ljudkvalitet upptäcktes i senaste segmentet.",
    processing_message="Mötet efterbearbetas.",
    completed_exported="Mötet är klart och exporterat.",
    completed_needs_attention="Mötet är klart men exporten behöver åtgärd.",
    export_failed_notice="Dokumentexporten misslyckades efter flera försök.",
    abandoned_message="Mötet avbröts.",
    stream_connected="SSE-anslutning aktiv",
    draft_title="Protokollutkast",
    draft_start="Start",
    draft_language="Språk",
    heading_summary="Sammanfattning",
    heading_topics="Nyckelämnen",
    heading_decisions="Beslut",
    heading_actions="Action items",
    heading_questions="Öppna frågor",
    heading_risks="Risker",
    owner_label="Ägare",
    due_label="Deadline",
    none_summary="- Inget innehåll att sammanfatta.",
    none_topics="- Inga nyckelämnen extraherades.",
    none_decisions="- Inga tydliga beslut extraherades.",
    none_actions="- Inga tydliga action items extraherades.",
    none_questions="- Inga öppna frågor extraherades.",
    none_risks="- Inga tydliga risker extraherades.",
)

ENGLISH = Lexicon(
    code="en",
    unknown_speaker="Unknown speaker",
    stopwords=frozenset(
        {
            "that", "this", "with", "have", "from", "they", "will", "would",
            "there", "their", "what", "when", "where", "which", "about",
            "were", "been", "also", "into", "than", "then", "them", "some",
            "just", "like", "should", "could", "meeting", "think", "going",
            "yeah", "okay",
        }
    ),
    decision_re=_ci(r"\b(decision|decided|we decide|approved)\b"),
    action_re=_ci(r"\b(action|todo|to-do|follow[- ]up|will\s+[^.?!]{3,})\b"),
    need_re=_ci(r"\bwe need to\b"),
    question_re=_ci(r"\b(question|unclear|to be investigated|tbd)\b"),
    risk_re=_ci(r"\b(risk|problem|blocker|uncertainty|dependency)\b"),
    owner_re=_ci(rf"^({NAME_CHARS}{{2,40}}) should\b"),
    week_re=_ci(r"\b(?:week|w)\s?(\d{1,2})\b"),
    week_label="week",
    overlap_risk="Overlapping speech detected near second {seconds}.",
    default_title="Meeting {date}",
    mock_transcription="[Audio chunk received. Configure OpenAI STT for real transcription.]",
    low_quality_advisory="Low audio quality detected in the latest segment.",
    processing_message="Meeting is being processed.",
    completed_exported="Meeting completed and exported.",
    completed_needs_attention="Meeting completed but the export needs attention.",
    export_failed_notice="Document export failed after several attempts.",
    abandoned_message="Meeting was abandoned.",
    stream_connected="Live connection active",
    draft_title="Protocol draft",
    draft_start="Start",
    draft_language="Language",
    heading_summary="Summary",
    heading_topics="Key topics",
    heading_decisions="Decisions",
    heading_actions="Action items",
    heading_questions="Open questions",
    heading_risks="Risks",
    owner_label="Owner",
    due_label="Due",
    none_summary="- Nothing to summarize.",
    none_topics="- No key topics extracted.",
    none_decisions="- No clear decisions extracted.",
    none_actions="- No clear action items extracted.",
    none_questions="- No open questions extracted.",
    none_risks="- No clear risks extracted.",
)

_LEXICONS = {lexicon.code: lexicon for lexicon in (SWEDISH, ENGLISH)}


def get_lexicon(language: str | None) -> Lexicon:
    """Resolve a language code (``sv``, ``en-GB``...) to a lexicon.

    Unknown or missing codes fall back to Swedish.
    """
    if not language:
        return SWEDISH
    primary = language.strip().lower().replace("_", "-").split("-", 1)[0]
    return _LEXICONS.get(primary, SWEDISH)
