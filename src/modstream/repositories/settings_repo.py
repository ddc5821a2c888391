"""
Storage for per-guild automod settings.

Each setting is one row keyed by (guildId, key). Values are JSON text so the
web dashboard and the bot can exchange lists and booleans without a schema
change; ``timestamp`` is epoch milliseconds of the last write and doubles as
the version used to detect edits made by the dashboard.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

import aiosqlite

from modstream.util.logger import get_logger

logger = get_logger("settings_repo")


def decode_value(raw: Any) -> Any:
    """Decode a stored JSON value, falling back to the raw text."""
    if raw is None or not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class SettingsRepository:
    """Low-level access to the ``automod_settings`` table."""

    @staticmethod
    async def get_for_guild(conn: aiosqlite.Connection, guild_id: str) -> Dict[str, Any]:
        """Return ``{key: decoded value}`` for every stored setting of a guild."""
        cursor = await conn.execute(
            "SELECT key, value FROM automod_settings WHERE guildId = ?",
            (str(guild_id),),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return {row["key"]: decode_value(row["value"]) for row in rows}

    @staticmethod
    async def get_version(conn: aiosqlite.Connection, guild_id: str) -> int:
        """Return the newest write timestamp for a guild, 0 if it has no rows."""
        cursor = await conn.execute(
            "SELECT COALESCE(MAX(timestamp), 0) AS version FROM automod_settings WHERE guildId = ?",
            (str(guild_id),),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row["version"]) if row else 0

    @staticmethod
    async def get_versions(conn: aiosqlite.Connection) -> Dict[str, int]:
        """Return the newest write timestamp of every guild that has settings."""
        cursor = await conn.execute(
            "SELECT guildId, MAX(timestamp) AS version FROM automod_settings GROUP BY guildId"
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return {row["guildId"]: int(row["version"]) for row in rows}

    @staticmethod
    async def upsert_many(
        conn: aiosqlite.Connection,
        guild_id: str,
        settings: Mapping[str, Any],
        timestamp: int,
    ) -> None:
        """Insert or update several keys. Run inside a transaction."""
        await conn.executemany(
            """
            INSERT INTO automod_settings (guildId, key, value, timestamp)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guildId, key) DO UPDATE SET
                value     = excluded.value,
                timestamp = excluded.timestamp
            """,
            [(str(guild_id), key, json.dumps(value), timestamp) for key, value in settings.items()],
        )
