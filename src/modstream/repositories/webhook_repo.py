"""Storage for per-guild notification webhook URLs."""

from __future__ import annotations

from typing import Optional

import aiosqlite


class WebhookRepository:
    """Low-level access to the ``webhooks`` table."""

    @staticmethod
    async def get_url(conn: aiosqlite.Connection, guild_id: str) -> Optional[str]:
        cursor = await conn.execute(
            "SELECT webhookURL FROM webhooks WHERE guildId = ?",
            (str(guild_id),),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row["webhookURL"] if row else None

    @staticmethod
    async def upsert(
        conn: aiosqlite.Connection,
        guild_id: str,
        url: str,
        added_by: str,
        timestamp: int,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO webhooks (guildId, webhookURL, addedBy, timestamp)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guildId) DO UPDATE SET
                webhookURL = excluded.webhookURL,
                addedBy    = excluded.addedBy,
                timestamp  = excluded.timestamp
            """,
            (str(guild_id), url, str(added_by), timestamp),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, guild_id: str) -> None:
        await conn.execute("DELETE FROM webhooks WHERE guildId = ?", (str(guild_id),))
