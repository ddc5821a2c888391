"""
Database schema initialization and version tracking.

The ``automod_settings`` and ``webhooks`` tables are shared with the web
dashboard, which writes to them from its own process; their column names
therefore stay in the dashboard's camelCase.
"""

import aiosqlite
from modstream.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates tables and indexes and records the schema version."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        # Per-guild automod key/value settings, values are JSON
        await db.execute("""
            CREATE TABLE IF NOT EXISTS automod_settings (
                guildId TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT,
                timestamp INTEGER NOT NULL,
                PRIMARY KEY (guildId, key)
            )
        """)

        # Append-only moderation event log; ids are assigned by the application
        await db.execute("""
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY,
                type TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                moderator_id TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                timestamp INTEGER NOT NULL,
                payload TEXT NOT NULL DEFAULT '{}'
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS warnings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                guild_id TEXT NOT NULL,
                moderator_id TEXT NOT NULL,
                reason TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                active INTEGER NOT NULL DEFAULT 1
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS webhooks (
                guildId TEXT PRIMARY KEY,
                webhookURL TEXT NOT NULL,
                addedBy TEXT,
                timestamp INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_automod_settings_guild ON automod_settings(guildId, timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_events_type ON events(type, id DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_events_guild ON events(guild_id, id DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_events_subject ON events(subject_id, id DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_events_moderator ON events(moderator_id, id DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_warnings_lookup ON warnings(user_id, guild_id, active)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
