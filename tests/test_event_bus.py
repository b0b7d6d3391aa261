"""Tests for the in-process LiveEventBus and LiveStream.

Covers no-subscriber publishes, callback subscriptions (sync, async,
failing handlers), per-meeting isolation, bounded queues dropping events,
pull-based streams with heartbeats, and event serialization.
"""

from __future__ import annotations

import asyncio

import pytest

from src.meetscribe.events.bus import LiveEventBus
from src.meetscribe.events.schemas import (
    HeartbeatEvent,
    SegmentEvent,
    StatusEvent,
    live_event_adapter,
)
from src.meetscribe.meetings.schemas import MeetingStatus, TranscriptSegment


def _status(message: str = "hej") -> StatusEvent:
    return StatusEvent(status=MeetingStatus.LIVE, message=message)


async def _drain() -> None:
    """Let pump tasks run."""
    for _ in range(5):
        await asyncio.sleep(0)


# ── Publish / Subscribe ──────────────────────────────────────────────────────


class TestPublishSubscribe:
    """Tests callback subscriptions."""

    def test_publish_without_subscribers_is_noop(self):
        bus = LiveEventBus()
        assert bus.publish("meeting-1", _status()) == 0
        assert bus.subscriber_count("meeting-1") == 0

    @pytest.mark.asyncio
    async def test_async_handler_receives_events_in_order(self):
        bus = LiveEventBus()
        received: list[str] = []

        async def handler(event):
            received.append(event.message)

        unsubscribe = bus.subscribe("meeting-1", handler)
        assert bus.publish("meeting-1", _status("a")) == 1
        bus.publish("meeting-1", _status("b"))
        await _drain()

        assert received == ["a", "b"]
        unsubscribe()

    @pytest.mark.asyncio
    async def test_sync_handler_supported(self):
        bus = LiveEventBus()
        received = []
        unsubscribe = bus.subscribe("meeting-1", received.append)

        bus.publish("meeting-1", _status())
        await _drain()

        assert len(received) == 1
        unsubscribe()

    @pytest.mark.asyncio
    async def test_events_are_scoped_per_meeting(self):
        bus = LiveEventBus()
        received = []
        unsubscribe = bus.subscribe("meeting-1", received.append)

        assert bus.publish("meeting-2", _status()) == 0
        await _drain()

        assert received == []
        unsubscribe()

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self):
        bus = LiveEventBus()
        unsubscribe = bus.subscribe("meeting-1", lambda event: None)
        assert bus.subscriber_count("meeting-1") == 1

        unsubscribe()
        unsubscribe()

        assert bus.subscriber_count("meeting-1") == 0
        assert bus.publish("meeting-1", _status()) == 0

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_affect_others(self):
        bus = LiveEventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        unsub_broken = bus.subscribe("meeting-1", broken)
        unsub_ok = bus.subscribe("meeting-1", received.append)

        assert bus.publish("meeting-1", _status("a")) == 2
        bus.publish("meeting-1", _status("b"))
        await _drain()

        assert [event.message for event in received] == ["a", "b"]
        unsub_broken()
        unsub_ok()

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self):
        bus = LiveEventBus(queue_size=1)
        stream = bus.stream("meeting-1")

        assert bus.publish("meeting-1", _status("kept")) == 1
        assert bus.publish("meeting-1", _status("dropped")) == 0

        event = await stream.__anext__()
        assert event.message == "kept"
        await stream.aclose()


# ── LiveStream ───────────────────────────────────────────────────────────────


class TestLiveStream:
    """Tests the pull-based stream used by the SSE endpoint."""

    @pytest.mark.asyncio
    async def test_registered_before_iteration(self):
        bus = LiveEventBus()
        stream = bus.stream("meeting-1")
        assert bus.subscriber_count("meeting-1") == 1

        bus.publish("meeting-1", _status("early"))

        event = await stream.__anext__()
        assert event.message == "early"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self):
        bus = LiveEventBus()
        async with bus.stream("meeting-1", heartbeat_seconds=0.01) as stream:
            event = await stream.__anext__()
        assert isinstance(event, HeartbeatEvent)

    @pytest.mark.asyncio
    async def test_context_exit_unregisters(self):
        bus = LiveEventBus()
        async with bus.stream("meeting-1"):
            assert bus.subscriber_count("meeting-1") == 1
        assert bus.subscriber_count("meeting-1") == 0

    @pytest.mark.asyncio
    async def test_closed_stream_stops_iteration(self):
        bus = LiveEventBus()
        stream = bus.stream("meeting-1")
        await stream.aclose()
        await stream.aclose()

        collected = [event async for event in stream]
        assert collected == []


# ── Serialization ────────────────────────────────────────────────────────────


class TestEventSchemas:
    """Tests the discriminated union round trip used by transports."""

    def test_segment_event_parses_by_type(self):
        segment = TranscriptSegment(
            meeting_id="meeting-1",
            speaker_label="Anna",
            text="Hej",
            confidence=0.9,
            timestamp_ms=10,
        )
        payload = SegmentEvent(segment=segment).model_dump(mode="json")

        parsed = live_event_adapter.validate_python(payload)

        assert isinstance(parsed, SegmentEvent)
        assert parsed.segment.id == segment.id

    def test_status_event_serializes_status_value(self):
        payload = StatusEvent(status=MeetingStatus.PROCESSING).model_dump(mode="json")
        assert payload == {"type": "status", "status": "processing", "message": None}
