"""
Sliding-window message spam detection.

Every (guild, author) pair gets a :class:`SpamWindow` of recent message
timestamps. ``observe`` prunes timestamps that fell out of the policy's
window, records the new message and fires once the count reaches the
threshold, after which the pair starts over with an empty window.

Memory is bounded two ways by ``sweep``, which the runtime calls on a fixed
interval:

* windows idle for longer than ``stale_after_ms`` are dropped;
* if more than ``max_tracked`` pairs remain, the least recently active ones
  are evicted until the map is back at the ceiling.

All state lives behind one ``threading.Lock``. Neither operation awaits, so
the lock is never held across a suspension point.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterator, Optional, Tuple

from modstream.datatypes.discord_datatypes import GuildID, UserID
from modstream.datatypes.moderation_datatypes import InboundMessage, Violation, ViolationKind
from modstream.datatypes.policy import Policy
from modstream.util.logger import get_logger

logger = get_logger("spam_tracker")

PairKey = Tuple[str, str]


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


@dataclass(slots=True)
class SpamWindow:
    """Timestamps (ms) of one author's recent messages in one guild, oldest first."""

    timestamps: Deque[int] = field(default_factory=deque)
    last_active: int = 0

    def prune(self, now: int, window_ms: int) -> None:
        while self.timestamps and now - self.timestamps[0] >= window_ms:
            self.timestamps.popleft()


class SpamWindowMap:
    """
    Bounded map of spam windows kept in least-recently-active order.

    Touching a pair moves it to the end, so the front of the map is always
    the globally idlest pair. Not thread-safe on its own; :class:`SpamTracker`
    serialises access.
    """

    def __init__(self) -> None:
        self._windows: "OrderedDict[PairKey, SpamWindow]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, key: PairKey) -> bool:
        return key in self._windows

    def __iter__(self) -> Iterator[PairKey]:
        return iter(self._windows)

    def get(self, key: PairKey) -> Optional[SpamWindow]:
        return self._windows.get(key)

    def touch(self, key: PairKey, now: int) -> SpamWindow:
        """Return the window for ``key``, creating it, and mark it most recently active."""
        window = self._windows.get(key)
        if window is None:
            window = SpamWindow()
            self._windows[key] = window
        else:
            self._windows.move_to_end(key)
        window.last_active = now
        return window

    def remove(self, key: PairKey) -> None:
        self._windows.pop(key, None)

    def expire_idle(self, now: int, stale_after_ms: int) -> int:
        """Drop windows idle for longer than ``stale_after_ms``."""
        removed = 0
        while self._windows:
            key, window = next(iter(self._windows.items()))
            if now - window.last_active <= stale_after_ms:
                break
            del self._windows[key]
            removed += 1
        return removed

    def evict_to_capacity(self, capacity: int) -> int:
        """Evict least-recently-active windows until at most ``capacity`` remain."""
        removed = 0
        while len(self._windows) > capacity:
            self._windows.popitem(last=False)
            removed += 1
        return removed


class SpamTracker:
    """Per-(guild, author) message rate tracking."""

    def __init__(
        self,
        stale_after_ms: int = 60_000,
        max_tracked: int = 10_000,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        if stale_after_ms <= 0 or max_tracked <= 0:
            raise ValueError("stale_after_ms and max_tracked must be positive")
        self._stale_after_ms = stale_after_ms
        self._max_tracked = max_tracked
        self._clock = clock
        self._windows = SpamWindowMap()
        self._lock = threading.Lock()

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._windows)

    def window_size(self, guild_id: GuildID, author_id: UserID) -> int:
        """Number of timestamps currently held for a pair (0 if untracked)."""
        with self._lock:
            window = self._windows.get((str(guild_id), str(author_id)))
            return len(window.timestamps) if window else 0

    def observe(
        self,
        guild_id: GuildID,
        author_id: UserID,
        policy: Policy,
        now: Optional[int] = None,
    ) -> Optional[int]:
        """Record one message and return the window count if it crossed the threshold.

        ``now`` is in milliseconds on the tracker's clock. Returns None when
        the message did not trigger (or spam detection is off for the policy).
        """
        if not policy.enabled or policy.spam_threshold <= 0:
            return None
        if now is None:
            now = self._clock()

        key = (str(guild_id), str(author_id))
        with self._lock:
            window = self._windows.touch(key, now)
            window.prune(now, policy.spam_window_ms)
            window.timestamps.append(now)
            count = len(window.timestamps)
            if count < policy.spam_threshold:
                return None
            window.timestamps.clear()

        logger.info(
            "[SPAM TRACKER] Author %s sent %d messages within %d ms in guild %s",
            author_id, count, policy.spam_window_ms, guild_id,
        )
        return count

    def observe_message(
        self,
        message: InboundMessage,
        policy: Policy,
        now: Optional[int] = None,
    ) -> Optional[Violation]:
        """:meth:`observe` for a full message, wrapping a trigger as a violation."""
        count = self.observe(message.guild_id, message.author_id, policy, now)
        if count is None:
            return None
        return Violation.for_message(
            ViolationKind.MESSAGE_SPAM,
            "Spam detected",
            message,
            evidence=message.content,
            message_count=count,
        )

    def sweep(self, now: Optional[int] = None) -> int:
        """Apply idle expiry then the capacity ceiling. Returns how many pairs were dropped."""
        if now is None:
            now = self._clock()
        with self._lock:
            expired = self._windows.expire_idle(now, self._stale_after_ms)
            evicted = self._windows.evict_to_capacity(self._max_tracked)
            remaining = len(self._windows)

        if expired or evicted:
            logger.debug(
                "[SPAM TRACKER] Sweep dropped %d idle and %d over-capacity windows (%d tracked)",
                expired, evicted, remaining,
            )
        return expired + evicted
