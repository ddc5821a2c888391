"""
Live fan-out of appended events.

The broadcaster keeps a ring buffer of the most recent events so a newly
connected observer can be brought up to date without touching the database.
The buffer is a convenience copy; the event log stays the source of truth,
and on startup the buffer is refilled from :meth:`EventLog.recent`.

Delivery is at-most-once per subscriber. ``publish`` never waits: if a
subscriber's queue is full the event is dropped for that subscriber only.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Iterable, List, Optional, Set

from modstream.datatypes.event_datatypes import ModerationEvent
from modstream.util.logger import get_logger

logger = get_logger("event_broadcaster")


# Queued after the last event when a subscription closes
_CLOSED = object()


class Subscription:
    """A live feed of events for one observer.

    Iterate with ``async for`` or call :meth:`get`. The replay buffer is
    already queued when the subscription is handed out. Closing wakes any
    consumer blocked waiting for the next event; it receives whatever was
    still queued and then stops.
    """

    def __init__(self, broadcaster: "EventBroadcaster", max_queue: int) -> None:
        self._broadcaster = broadcaster
        self._max_queue = max_queue
        # Unbounded so the close marker always fits; _offer enforces the cap
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.dropped = 0
        self.closed = False

    def _offer(self, event: ModerationEvent) -> bool:
        if self._queue.qsize() >= self._max_queue:
            self.dropped += 1
            return False
        self._queue.put_nowait(event)
        return True

    def _mark_closed(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        return self._queue.qsize() - (1 if self.closed else 0)

    async def get(self) -> Optional[ModerationEvent]:
        """Wait for the next event. Returns None once the subscription is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> List[ModerationEvent]:
        """Return everything currently queued without waiting."""
        events: List[ModerationEvent] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ModerationEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBroadcaster:
    """Fans events out to subscribers in append order."""

    def __init__(self, history_size: int = 100, subscriber_queue_size: int = 1000) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be positive")
        self._history: Deque[ModerationEvent] = deque(maxlen=history_size)
        self._subscribers: Set[Subscription] = set()
        # A subscriber must be able to hold the full replay plus some live slack
        self._queue_size = max(subscriber_queue_size, history_size)

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def rehydrate(self, events: Iterable[ModerationEvent]) -> None:
        """Replace the replay buffer with ``events`` (ascending order)."""
        self._history.clear()
        self._history.extend(sorted(events, key=lambda event: event.sequence_id))
        logger.info("[BROADCASTER] Replay buffer rehydrated with %d events", len(self._history))

    def publish(self, event: ModerationEvent) -> None:
        """Record ``event`` in the replay buffer and push it to every subscriber.

        Called by the event log right after a successful append, so calls
        arrive in sequence order.
        """
        if self._history and event.sequence_id <= self._history[-1].sequence_id:
            logger.warning(
                "[BROADCASTER] Ignoring out-of-order event %d (last was %d)",
                event.sequence_id, self._history[-1].sequence_id,
            )
            return
        self._history.append(event)

        for subscription in list(self._subscribers):
            if not subscription._offer(event):
                logger.warning(
                    "[BROADCASTER] Subscriber queue full; dropped event %d (%d dropped so far)",
                    event.sequence_id, subscription.dropped,
                )

    def subscribe(self) -> Subscription:
        """Open a subscription pre-loaded with the replay buffer in ascending order."""
        subscription = Subscription(self, self._queue_size)
        for event in self._history:
            subscription._offer(event)
        self._subscribers.add(subscription)
        logger.debug("[BROADCASTER] Subscriber joined (%d active)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)
        subscription._mark_closed()

    def get_recent_history(self, limit: Optional[int] = None) -> List[ModerationEvent]:
        """Return up to ``limit`` of the newest buffered events, oldest first."""
        history = list(self._history)
        if limit is None or limit >= len(history):
            return history
        if limit <= 0:
            return []
        return history[-limit:]
