"""
Storage for the append-only ``events`` table.

Ids are handed out by :class:`modstream.events.event_log.EventLog` and
inserted explicitly; this module never lets SQLite pick one.
"""

from __future__ import annotations

import json
from typing import Any, List

import aiosqlite

from modstream.datatypes.event_datatypes import EventQuery, ModerationEvent

_COLUMNS = "id, type, guild_id, subject_id, moderator_id, reason, timestamp, payload"


class EventsRepository:
    """Low-level access to the ``events`` table."""

    @staticmethod
    async def insert(conn: aiosqlite.Connection, event: ModerationEvent) -> None:
        await conn.execute(
            f"INSERT INTO events ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.sequence_id,
                event.type,
                event.guild_id,
                event.subject_id,
                event.moderator_id,
                event.reason,
                event.timestamp,
                json.dumps(event.payload, default=str),
            ),
        )

    @staticmethod
    async def exists(conn: aiosqlite.Connection, sequence_id: int) -> bool:
        cursor = await conn.execute("SELECT 1 FROM events WHERE id = ?", (sequence_id,))
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    @staticmethod
    async def max_id(conn: aiosqlite.Connection) -> int:
        cursor = await conn.execute("SELECT COALESCE(MAX(id), 0) AS max_id FROM events")
        row = await cursor.fetchone()
        await cursor.close()
        return int(row["max_id"]) if row else 0

    @staticmethod
    async def query(conn: aiosqlite.Connection, filters: EventQuery, limit: int) -> List[ModerationEvent]:
        """Return events matching ``filters``, newest first, at most ``limit`` rows."""
        clauses: List[str] = []
        params: List[Any] = []

        if filters.type:
            clauses.append("type = ?")
            params.append(filters.type)
        if filters.guild_id:
            clauses.append("guild_id = ?")
            params.append(str(filters.guild_id))
        if filters.user_id:
            clauses.append("(subject_id = ? OR moderator_id = ?)")
            params.extend([str(filters.user_id), str(filters.user_id)])
        if filters.since is not None:
            clauses.append("timestamp >= ?")
            params.append(int(filters.since))

        sql = f"SELECT {_COLUMNS} FROM events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [ModerationEvent.from_row(row) for row in rows]
