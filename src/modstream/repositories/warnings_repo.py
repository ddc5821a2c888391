"""Storage for the ``warnings`` table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import aiosqlite


@dataclass
class WarningRecord:
    """A single row from the ``warnings`` table."""
    id: int
    user_id: str
    guild_id: str
    moderator_id: str
    reason: str
    timestamp: int  # epoch milliseconds
    active: bool


class WarningsRepository:
    """Low-level CRUD for the ``warnings`` table."""

    @staticmethod
    async def insert(
        conn: aiosqlite.Connection,
        user_id: str,
        guild_id: str,
        moderator_id: str,
        reason: str,
        timestamp: int,
    ) -> int:
        """Insert an active warning and return its row id."""
        cursor = await conn.execute(
            """
            INSERT INTO warnings (user_id, guild_id, moderator_id, reason, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (str(user_id), str(guild_id), str(moderator_id), reason, timestamp),
        )
        row_id = cursor.lastrowid
        await cursor.close()
        return int(row_id or 0)

    @staticmethod
    async def count_active(conn: aiosqlite.Connection, user_id: str, guild_id: str) -> int:
        cursor = await conn.execute(
            "SELECT COUNT(*) AS count FROM warnings WHERE user_id = ? AND guild_id = ? AND active = 1",
            (str(user_id), str(guild_id)),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row["count"]) if row else 0

    @staticmethod
    async def list_active(
        conn: aiosqlite.Connection,
        user_id: str,
        guild_id: str,
        limit: int,
    ) -> List[WarningRecord]:
        """Return the newest active warnings first."""
        cursor = await conn.execute(
            """
            SELECT id, user_id, guild_id, moderator_id, reason, timestamp, active
            FROM warnings
            WHERE user_id = ? AND guild_id = ? AND active = 1
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (str(user_id), str(guild_id), limit),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            WarningRecord(
                id=row["id"],
                user_id=row["user_id"],
                guild_id=row["guild_id"],
                moderator_id=row["moderator_id"],
                reason=row["reason"],
                timestamp=row["timestamp"],
                active=bool(row["active"]),
            )
            for row in rows
        ]
