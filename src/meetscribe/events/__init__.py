"""Live update fan-out for meetings.

Exports:
    LiveEventBus: In-process per-meeting publish/subscribe.
    SegmentEvent, StatusEvent, HeartbeatEvent: Event variants.
"""

from __future__ import annotations

from src.meetscribe.events.bus import LiveEventBus, LiveStream
from src.meetscribe.events.schemas import (
    HeartbeatEvent,
    LiveEvent,
    SegmentEvent,
    StatusEvent,
)

__all__ = [
    "HeartbeatEvent",
    "LiveEvent",
    "LiveEventBus",
    "LiveStream",
    "SegmentEvent",
    "StatusEvent",
]
