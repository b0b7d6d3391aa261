"""Unit tests for ArtifactExtractor.

Tests decision/action/question/risk classification, case-insensitive
dedup with merged references, owner and due-date detection, key topic
ranking, summary selection, overlap risks, and the fixed-section draft
with placeholders for empty input.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.meetscribe.meetings.minutes.extractor import (
    MAX_KEY_TOPICS,
    ArtifactExtractor,
    normalize_line,
)
from src.meetscribe.meetings.minutes.lexicon import ENGLISH, SWEDISH, get_lexicon
from src.meetscribe.meetings.schemas import Meeting, Participant, TranscriptSegment

STARTED = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

ANNA = Participant(id="p-anna", name="Anna")
BJORN = Participant(id="p-bjorn", name="Björn")


def _make_meeting(**overrides) -> Meeting:
    defaults = {
        "id": "meeting-1",
        "title": "Veckomöte",
        "language": "sv",
        "started_at": STARTED,
        "participant_ids": [ANNA.id, BJORN.id],
    }
    defaults.update(overrides)
    return Meeting(**defaults)


def _make_segment(seg_id: str, text: str, **overrides) -> TranscriptSegment:
    defaults = {
        "id": seg_id,
        "meeting_id": "meeting-1",
        "speaker_label": "Anna",
        "text": text,
        "confidence": 0.99,
        "timestamp_ms": 0,
    }
    defaults.update(overrides)
    return TranscriptSegment(**defaults)


def _generate(segments, meeting=None, participants=None):
    return ArtifactExtractor().generate(
        meeting or _make_meeting(),
        participants if participants is not None else [ANNA, BJORN],
        segments,
    )


# ── Classification ───────────────────────────────────────────────────────────


class TestClassification:
    """Tests that each category picks up its keywords independently."""

    def test_decision_detected(self):
        result = _generate([_make_segment("s1", "Beslut att vi prioriterar API-förbättringen.")])
        assert len(result.decisions) == 1
        assert "Beslut" in result.decisions[0].text
        assert result.decisions[0].id == "dec-s1"
        assert result.decisions[0].references == ["s1"]

    def test_question_mark_is_open_question(self):
        result = _generate([_make_segment("s1", "Hur löser vi inloggningen?")])
        assert [q.id for q in result.open_questions] == ["q-s1"]

    def test_question_keyword_without_question_mark(self):
        result = _generate([_make_segment("s1", "Det är oklart vem som äger budgeten")])
        assert len(result.open_questions) == 1

    def test_risk_detected(self):
        result = _generate([_make_segment("s1", "Det finns en risk med leverantören")])
        assert [r.id for r in result.risks] == ["risk-s1"]

    def test_one_segment_can_land_in_several_categories(self):
        result = _generate(
            [_make_segment("s1", "Beslut: vi behöver hantera risken med leverantören?")]
        )
        assert len(result.decisions) == 1
        assert len(result.action_items) == 1
        assert len(result.open_questions) == 1

    def test_plain_chatter_yields_nothing(self):
        result = _generate([_make_segment("s1", "Hej och välkomna")])
        assert result.decisions == []
        assert result.action_items == []
        assert result.open_questions == []
        assert result.risks == []

    def test_english_keywords(self):
        meeting = _make_meeting(language="en")
        result = _generate(
            [
                _make_segment("s1", "We decided to ship on Friday"),
                _make_segment("s2", "We need to update the docs"),
            ],
            meeting=meeting,
        )
        assert [d.id for d in result.decisions] == ["dec-s1"]
        assert [a.id for a in result.action_items] == ["act-s2"]


# ── Dedup ────────────────────────────────────────────────────────────────────


class TestDedup:
    """Tests that repeated statements are collapsed per category."""

    def test_case_insensitive_duplicate_merges_references(self):
        result = _generate(
            [
                _make_segment("s1", "Beslut att vi kör  vidare"),
                _make_segment("s2", "beslut att vi kör vidare"),
            ]
        )
        assert len(result.decisions) == 1
        assert result.decisions[0].id == "dec-s1"
        assert result.decisions[0].references == ["s1", "s2"]

    def test_whitespace_is_normalized(self):
        assert normalize_line("  Beslut \n att\tvi kör ") == "Beslut att vi kör"


# ── Action Items ─────────────────────────────────────────────────────────────


class TestActionItems:
    """Tests owner and due date detection."""

    def test_participant_named_in_line_is_owner(self):
        result = _generate([_make_segment("s1", "Vi behöver att Björn skickar offerten")])
        assert result.action_items[0].owner == "Björn"

    def test_ska_pattern_owner_when_not_a_participant(self):
        result = _generate([_make_segment("s1", "Cecilia ska boka lokalen")])
        assert result.action_items[0].owner == "Cecilia"

    def test_no_owner(self):
        result = _generate([_make_segment("s1", "Vi behöver en ny budget")])
        assert result.action_items[0].owner is None

    def test_iso_date_due(self):
        item = _generate([_make_segment("s1", "Anna ska leverera 2026-03-15")]).action_items[0]
        assert item.due_date == "2026-03-15"

    def test_slash_date_due(self):
        item = _generate([_make_segment("s1", "Anna ska leverera 15/3")]).action_items[0]
        assert item.due_date == "15/3"

    def test_week_due(self):
        item = _generate([_make_segment("s1", "Anna ska leverera vecka 12")]).action_items[0]
        assert item.due_date == "vecka 12"

    def test_iso_date_wins_over_week(self):
        assert (
            ArtifactExtractor.find_due_date("v 12 eller 2026-03-15", SWEDISH) == "2026-03-15"
        )

    def test_english_week(self):
        assert ArtifactExtractor.find_due_date("by week 7", ENGLISH) == "week 7"


# ── Topics & Summary ─────────────────────────────────────────────────────────


class TestTopicsAndSummary:
    """Tests key topic ranking and summary line selection."""

    def test_topics_ranked_by_frequency(self):
        segments = [
            _make_segment("s1", "budget budget lansering"),
            _make_segment("s2", "budget lansering kunder"),
        ]
        topics = ArtifactExtractor.key_topics(segments, SWEDISH)
        assert topics[:3] == ["budget", "lansering", "kunder"]

    def test_stopwords_and_short_tokens_dropped(self):
        topics = ArtifactExtractor.key_topics(
            [_make_segment("s1", "och att det api mötet planering")], SWEDISH
        )
        assert topics == ["planering"]

    def test_equal_frequency_topics_keep_first_appearance(self):
        segments = [
            _make_segment("s1", "zebra apple"),
            _make_segment("s2", "mango apple zebra mango"),
        ]
        topics = ArtifactExtractor.key_topics(segments, SWEDISH)
        assert topics == ["zebra", "apple", "mango"]

    def test_topics_capped(self):
        text = " ".join(f"ämne{i}" for i in range(20))
        topics = ArtifactExtractor.key_topics([_make_segment("s1", text)], SWEDISH)
        assert topics == [f"ämne{i}" for i in range(MAX_KEY_TOPICS)]

    def test_summary_prefers_long_utterances(self):
        long_text = "Vi gick igenom hela roadmapen för andra kvartalet i detalj"
        segments = [
            _make_segment("s1", "Hej"),
            _make_segment("s2", long_text, speaker_label="Björn"),
        ]
        assert ArtifactExtractor.summary_lines(segments) == [f"- Björn: {long_text}"]

    def test_summary_falls_back_to_first_segments(self):
        segments = [_make_segment(f"s{i}", f"kort {i}") for i in range(7)]
        lines = ArtifactExtractor.summary_lines(segments)
        assert lines == [f"- Anna: kort {i}" for i in range(5)]


# ── Overlap ──────────────────────────────────────────────────────────────────


class TestOverlapRisk:
    """Tests overlapping speech produces a risk entry."""

    def test_overlapping_segment_adds_risk(self):
        result = _generate(
            [_make_segment("s1", "Hej", is_overlapping=True, timestamp_ms=42_500)]
        )
        assert len(result.risks) == 1
        risk = result.risks[0]
        assert risk.id == "risk-overlap-s1"
        assert "42s" in risk.text
        assert risk.references == ["s1"]


# ── Draft ────────────────────────────────────────────────────────────────────


class TestProtocolDraft:
    """Tests the fixed-section Markdown draft."""

    def test_empty_transcript_has_every_heading_and_placeholder(self):
        result = _generate([])
        draft = result.protocol_draft
        lexicon = get_lexicon("sv")
        assert draft.startswith("# Protokollutkast: Veckomöte")
        for heading in (
            lexicon.heading_summary,
            lexicon.heading_topics,
            lexicon.heading_decisions,
            lexicon.heading_actions,
            lexicon.heading_questions,
            lexicon.heading_risks,
        ):
            assert f"## {heading}" in draft
        for placeholder in (
            lexicon.none_summary,
            lexicon.none_topics,
            lexicon.none_decisions,
            lexicon.none_actions,
            lexicon.none_questions,
            lexicon.none_risks,
        ):
            assert placeholder in draft
        assert result.summary == ""

    def test_draft_lists_action_owner_and_due(self):
        draft = _generate(
            [_make_segment("s1", "Anna ska skicka rapporten 2026-04-01")]
        ).protocol_draft
        assert "| Ägare: Anna" in draft
        assert "| Deadline: 2026-04-01" in draft

    def test_draft_start_time(self):
        draft = _generate([]).protocol_draft
        assert "- Start: 2026-03-02 09:30 UTC" in draft

    def test_english_headings(self):
        draft = _generate([], meeting=_make_meeting(language="en-GB")).protocol_draft
        assert draft.startswith("# Protocol draft: ")
        assert "## Decisions" in draft
        assert "- No clear decisions extracted." in draft

    def test_equal_input_gives_equal_output(self):
        segments = [
            _make_segment("s1", "Beslut att vi kör"),
            _make_segment("s2", "Björn ska fixa demo v 10"),
        ]
        assert _generate(segments) == _generate(segments)
