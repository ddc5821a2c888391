"""
The authoritative, append-only moderation event log.

Sequence ids come from an in-process counter seeded from ``MAX(id)`` when
the log is opened. One ``asyncio.Lock`` covers id assignment, the insert and
listener notification, so:

* two appends can never receive the same id;
* event N is committed and visible before id N+1 is handed out;
* listeners (the broadcaster) see events in id order.

The counter only advances after a successful commit. A failed insert raises
:class:`StorageError` and the next append reuses the id, keeping the
sequence gapless. A constraint failure on any other column is a
StorageError too. Only a row already holding the id means another writer
touched the table, which breaks the ordering guarantee, so that case raises
:class:`SequenceError`.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import aiosqlite

from modstream.database.db_connection import ConnectionManager
from modstream.datatypes.event_datatypes import EventDraft, EventQuery, ModerationEvent
from modstream.errors import SequenceError, StorageError
from modstream.repositories.events_repo import EventsRepository
from modstream.util.logger import get_logger

logger = get_logger("event_log")

EventListener = Callable[[ModerationEvent], None]


class EventLog:
    """Single-writer event store backed by the ``events`` table."""

    def __init__(
        self,
        db: ConnectionManager,
        *,
        default_page_size: int = 50,
        max_page_size: int = 500,
    ) -> None:
        self._db = db
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._lock = asyncio.Lock()
        self._last_id: Optional[int] = None
        self._listeners: List[EventListener] = []

    @property
    def last_sequence_id(self) -> int:
        return self._last_id or 0

    async def open(self) -> None:
        """Seed the sequence counter from the highest stored id."""
        async with self._lock:
            async with self._db.read() as conn:
                self._last_id = await EventsRepository.max_id(conn)
        logger.info("[EVENT LOG] Opened; next sequence id is %d", self._last_id + 1)

    def add_listener(self, listener: EventListener) -> None:
        """Register a synchronous callback run after every successful append.

        Listeners run while the append lock is held and must not block.
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def append(self, draft: EventDraft) -> ModerationEvent:
        """Persist ``draft`` under the next sequence id and return the event.

        Raises:
            StorageError: The insert failed; the id was not consumed.
            SequenceError: The id was already taken or the log was never opened.
        """
        async with self._lock:
            if self._last_id is None:
                raise SequenceError("event log is not open")

            event = ModerationEvent.from_draft(self._last_id + 1, draft)
            try:
                async with self._db.transaction() as conn:
                    await EventsRepository.insert(conn, event)
            except aiosqlite.IntegrityError as exc:
                if await self._is_taken(event.sequence_id):
                    logger.critical("[EVENT LOG] Sequence id %d already exists: %s", event.sequence_id, exc)
                    raise SequenceError(f"sequence id {event.sequence_id} is already taken") from exc
                logger.error("[EVENT LOG] Rejected %s event for guild %s: %s", draft.type, draft.guild_id, exc)
                raise StorageError(f"invalid {draft.type} event: {exc}") from exc
            except Exception as exc:
                logger.error("[EVENT LOG] Failed to append %s event for guild %s: %s", draft.type, draft.guild_id, exc)
                raise StorageError(f"failed to append {draft.type} event: {exc}") from exc

            self._last_id = event.sequence_id

            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("[EVENT LOG] Listener %r failed for event %d", listener, event.sequence_id)

        logger.debug("[EVENT LOG] Appended #%d %s in guild %s", event.sequence_id, event.type, event.guild_id)
        return event

    async def _is_taken(self, sequence_id: int) -> bool:
        """Return True if a row with ``sequence_id`` exists. A failed lookup counts as not taken."""
        try:
            async with self._db.read() as conn:
                return await EventsRepository.exists(conn, sequence_id)
        except aiosqlite.Error as exc:
            logger.error("[EVENT LOG] Could not check sequence id %d: %s", sequence_id, exc)
            return False

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return self._default_page_size
        return min(limit, self._max_page_size)

    async def query(self, filters: Optional[EventQuery] = None) -> List[ModerationEvent]:
        """Return matching events newest first, at most one page.

        Raises:
            StorageError: If the read fails.
        """
        filters = filters or EventQuery()
        limit = self.clamp_limit(filters.limit)
        try:
            async with self._db.read() as conn:
                return await EventsRepository.query(conn, filters, limit)
        except Exception as exc:
            raise StorageError(f"failed to query events: {exc}") from exc

    async def recent(self, limit: int) -> List[ModerationEvent]:
        """Return the newest ``limit`` events in ascending sequence order."""
        newest_first = await self.query(EventQuery(limit=limit))
        return list(reversed(newest_first))
