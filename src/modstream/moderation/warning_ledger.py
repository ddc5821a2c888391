"""Warning records: the durable per-user tally moderators look at."""

from __future__ import annotations

from typing import List

from modstream.database.db_connection import ConnectionManager
from modstream.datatypes.discord_datatypes import GuildID, UserID
from modstream.errors import StorageError
from modstream.repositories.warnings_repo import WarningRecord, WarningsRepository
from modstream.util.logger import get_logger

logger = get_logger("warning_ledger")


class WarningLedger:
    """Records warnings and answers active-warning queries.

    Database failures surface as :class:`StorageError`.
    """

    def __init__(self, db: ConnectionManager) -> None:
        self._db = db

    async def record(
        self,
        guild_id: GuildID,
        user_id: UserID,
        moderator_id: str,
        reason: str,
        timestamp: int,
    ) -> int:
        """Store an active warning and return the user's new active-warning count."""
        try:
            async with self._db.transaction() as conn:
                await WarningsRepository.insert(conn, str(user_id), str(guild_id), moderator_id, reason, timestamp)
                count = await WarningsRepository.count_active(conn, str(user_id), str(guild_id))
        except Exception as exc:
            raise StorageError(f"failed to record warning for {user_id} in {guild_id}: {exc}") from exc

        logger.debug("[WARNING LEDGER] User %s in guild %s now has %d active warnings", user_id, guild_id, count)
        return count

    async def count_active(self, user_id: UserID, guild_id: GuildID) -> int:
        try:
            async with self._db.read() as conn:
                return await WarningsRepository.count_active(conn, str(user_id), str(guild_id))
        except Exception as exc:
            raise StorageError(f"failed to count warnings for {user_id} in {guild_id}: {exc}") from exc

    async def list_active(self, user_id: UserID, guild_id: GuildID, limit: int = 10) -> List[WarningRecord]:
        try:
            async with self._db.read() as conn:
                return await WarningsRepository.list_active(conn, str(user_id), str(guild_id), limit)
        except Exception as exc:
            raise StorageError(f"failed to list warnings for {user_id} in {guild_id}: {exc}") from exc
