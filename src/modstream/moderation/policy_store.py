"""
Per-guild automod policy cache.

Policies are loaded lazily on the first message from a guild and cached
until invalidated. ``update`` writes through to the database and drops the
cached copy; ``sync_stale`` picks up edits made by the web dashboard, which
writes the same table from another process.

Reads of the cache are plain dict lookups and never wait on a write. A
per-guild lock only serialises the initial load so concurrent first
messages do not each hit the database. Every invalidation bumps a per-guild
generation; a load that overlapped one is returned to its caller but never
cached, so an update is seen by the next ``resolve``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from modstream.database.db_connection import ConnectionManager
from modstream.datatypes.discord_datatypes import GuildID
from modstream.datatypes.policy import Policy, normalize_settings
from modstream.repositories.settings_repo import SettingsRepository
from modstream.util.logger import get_logger

logger = get_logger("policy_store")


@dataclass(frozen=True, slots=True)
class _CachedPolicy:
    policy: Policy
    version: int


class PolicyStore:
    """Resolves, caches and updates automod policies."""

    def __init__(self, db: ConnectionManager) -> None:
        self._db = db
        self._cache: Dict[str, _CachedPolicy] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}

    def _lock_for(self, guild_key: str) -> asyncio.Lock:
        lock = self._locks.get(guild_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[guild_key] = lock
        return lock

    @property
    def cached_guilds(self) -> list[str]:
        return list(self._cache)

    async def resolve(self, guild_id: GuildID) -> Policy:
        """Return the guild's policy.

        Never raises. If the settings cannot be read the guild is treated as
        having automod disabled, and the failure is not cached so the next
        call tries again.
        """
        key = str(guild_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.policy

        async with self._lock_for(key):
            cached = self._cache.get(key)
            if cached is not None:
                return cached.policy

            generation = self._generations.get(key, 0)
            try:
                async with self._db.read() as conn:
                    settings = await SettingsRepository.get_for_guild(conn, key)
                    version = await SettingsRepository.get_version(conn, key)
            except Exception as exc:
                logger.error("[POLICY STORE] Failed to load policy for guild %s, automod disabled: %s", key, exc)
                return Policy.disabled()

            policy = Policy.from_settings(settings)
            if self._generations.get(key, 0) != generation:
                logger.debug("[POLICY STORE] Policy for guild %s changed while loading; not cached", key)
                return policy
            self._cache[key] = _CachedPolicy(policy, version)
            logger.debug("[POLICY STORE] Loaded policy for guild %s (%d stored keys)", key, len(settings))
            return policy

    async def update(self, guild_id: GuildID, partial: Mapping[str, Any]) -> Policy:
        """Write a partial policy and return the freshly resolved result.

        Raises:
            ValidationError: If ``partial`` has unknown keys or bad values.
                Nothing is written in that case.
            aiosqlite.Error: If the write fails; the cached entry is kept.
        """
        key = str(guild_id)
        settings = normalize_settings(partial)
        timestamp = int(time.time() * 1000)

        async with self._db.transaction() as conn:
            await SettingsRepository.upsert_many(conn, key, settings, timestamp)

        self.invalidate(guild_id)
        logger.info("[POLICY STORE] Updated %s for guild %s", ", ".join(sorted(settings)), key)
        return await self.resolve(guild_id)

    def invalidate(self, guild_id: GuildID) -> None:
        key = str(guild_id)
        self._generations[key] = self._generations.get(key, 0) + 1
        self._cache.pop(key, None)

    async def sync_stale(self) -> int:
        """Drop cached policies whose stored settings changed since they were loaded.

        Returns the number of invalidated guilds.
        """
        if not self._cache:
            return 0

        async with self._db.read() as conn:
            versions = await SettingsRepository.get_versions(conn)

        stale = [
            key for key, cached in list(self._cache.items())
            if versions.get(key, 0) != cached.version
        ]
        for key in stale:
            self.invalidate(GuildID(key))
        if stale:
            logger.info("[POLICY STORE] Invalidated %d policies changed outside this process", len(stale))
        return len(stale)
