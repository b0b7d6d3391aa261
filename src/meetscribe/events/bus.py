"""In-process, per-meeting live event bus.

Fire-and-forget publish/subscribe used to fan out segment and status
events to connected clients. Each subscriber owns a bounded asyncio.Queue,
so a slow or failing subscriber never blocks the publisher or other
subscribers; when its queue is full, new events for that subscriber are
dropped and logged.

Publishing to a meeting with no subscribers is a no-op.

Note: state is per-process. A multi-instance deployment needs an external
broker behind the same publish/subscribe surface.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.meetscribe.events.schemas import HeartbeatEvent, LiveEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[[LiveEvent], Awaitable[None] | None]


class _Subscription:
    """One subscriber's private queue, plus the pump task for callbacks."""

    def __init__(self, meeting_id: str, maxsize: int) -> None:
        self.meeting_id = meeting_id
        self.queue: asyncio.Queue[LiveEvent] = asyncio.Queue(maxsize=maxsize)
        self.task: asyncio.Task[None] | None = None

    def offer(self, event: LiveEvent) -> bool:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "live_event_dropped",
                meeting_id=self.meeting_id,
                event_type=event.type,
                queue_size=self.queue.maxsize,
            )
            return False
        return True


class LiveEventBus:
    """Per-meeting publish/subscribe channel.

    Args:
        queue_size: Maximum buffered events per subscriber.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def publish(self, meeting_id: str, event: LiveEvent) -> int:
        """Enqueue an event for every subscriber of the meeting.

        Args:
            meeting_id: Meeting the event belongs to.
            event: SegmentEvent, StatusEvent or HeartbeatEvent.

        Returns:
            Number of subscribers the event was queued for.
        """
        subscribers = list(self._subscriptions.get(meeting_id, ()))
        delivered = sum(1 for sub in subscribers if sub.offer(event))
        logger.debug(
            "live_event_published",
            meeting_id=meeting_id,
            event_type=event.type,
            subscribers=len(subscribers),
            delivered=delivered,
        )
        return delivered

    def subscribe(
        self, meeting_id: str, handler: EventHandler
    ) -> Callable[[], None]:
        """Register a callback for a meeting's events.

        The handler (sync or async) runs in its own task, fed from the
        subscriber's queue. Must be called with a running event loop.

        Args:
            meeting_id: Meeting to listen to.
            handler: Callable invoked once per event, in publish order.

        Returns:
            Idempotent ``unsubscribe()`` callable.
        """
        subscription = self._register(meeting_id)
        subscription.task = asyncio.get_running_loop().create_task(
            self._pump(subscription, handler)
        )

        def unsubscribe() -> None:
            self._unregister(subscription)
            if subscription.task is not None and not subscription.task.done():
                subscription.task.cancel()

        return unsubscribe

    def stream(
        self,
        meeting_id: str,
        heartbeat_seconds: float | None = None,
    ) -> LiveStream:
        """Open a pull-based subscription for streaming transports.

        The subscription is registered immediately, so events published
        after this call are buffered even before iteration starts. Close it
        with ``aclose()`` or use it as an async context manager.

        Args:
            meeting_id: Meeting to listen to.
            heartbeat_seconds: Yield a HeartbeatEvent after this long
                without any other event; None waits indefinitely.
        """
        return LiveStream(self, self._register(meeting_id), heartbeat_seconds)

    def subscriber_count(self, meeting_id: str) -> int:
        return len(self._subscriptions.get(meeting_id, ()))

    # ── Internals ────────────────────────────────────────────────────────

    def _register(self, meeting_id: str) -> _Subscription:
        subscription = _Subscription(meeting_id, self._queue_size)
        self._subscriptions.setdefault(meeting_id, []).append(subscription)
        logger.debug("live_subscriber_added", meeting_id=meeting_id)
        return subscription

    def _unregister(self, subscription: _Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.meeting_id)
        if not subscribers or subscription not in subscribers:
            return
        subscribers.remove(subscription)
        if not subscribers:
            del self._subscriptions[subscription.meeting_id]
        logger.debug("live_subscriber_removed", meeting_id=subscription.meeting_id)

    @staticmethod
    async def _pump(subscription: _Subscription, handler: EventHandler) -> None:
        while True:
            event = await subscription.queue.get()
            try:
                result: Any = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "live_subscriber_handler_failed",
                    meeting_id=subscription.meeting_id,
                    event_type=event.type,
                    exc_info=True,
                )


class LiveStream:
    """Async iterator over one meeting's events, returned by LiveEventBus.stream()."""

    def __init__(
        self,
        bus: LiveEventBus,
        subscription: _Subscription,
        heartbeat_seconds: float | None,
    ) -> None:
        self._bus = bus
        self._subscription = subscription
        self._heartbeat_seconds = heartbeat_seconds
        self._closed = False

    def __aiter__(self) -> LiveStream:
        return self

    async def __anext__(self) -> LiveEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await asyncio.wait_for(
                self._subscription.queue.get(), timeout=self._heartbeat_seconds
            )
        except asyncio.TimeoutError:
            return HeartbeatEvent()

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            self._bus._unregister(self._subscription)

    async def __aenter__(self) -> LiveStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
