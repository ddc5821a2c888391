"""
Pytest configuration and fixtures for Modstream tests.
"""

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modstream.database.db_connection import ConnectionManager  # noqa: E402
from modstream.database.db_schema import SchemaManager  # noqa: E402
from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID  # noqa: E402
from modstream.datatypes.moderation_datatypes import InboundMessage  # noqa: E402


class FakePlatformAdapter:
    """In-memory PlatformAdapter that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, BaseException] = {}
        self.delays: dict[str, float] = {}

    async def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def called(self, name: str) -> list[tuple]:
        return [args for call_name, args in self.calls if call_name == name]

    async def delete_message(self, guild_id, channel_id, message_id):
        await self._record("delete_message", guild_id, channel_id, message_id)

    async def timeout_member(self, guild_id, user_id, duration, reason):
        await self._record("timeout_member", guild_id, user_id, duration, reason)

    async def kick_member(self, guild_id, user_id, reason):
        await self._record("kick_member", guild_id, user_id, reason)

    async def ban_member(self, guild_id, user_id, reason, delete_message_seconds):
        await self._record("ban_member", guild_id, user_id, reason, delete_message_seconds)

    async def send_notice(self, guild_id, user_id, title, description):
        await self._record("send_notice", guild_id, user_id, title, description)


@pytest.fixture()
def platform() -> FakePlatformAdapter:
    return FakePlatformAdapter()


@pytest_asyncio.fixture()
async def db(tmp_path: Path):
    """Open a fresh SQLite database with the full schema."""
    manager = ConnectionManager()
    await manager.open(tmp_path / "modstream_test.db")
    await SchemaManager.initialize_schema(manager.connection)
    yield manager
    await manager.close()


@pytest.fixture()
def make_message():
    """Factory for InboundMessage records with sensible defaults."""
    counter = {"next_id": 1000}

    def _make(
        content: str = "hello there",
        *,
        guild_id: int = 1,
        channel_id: int = 10,
        author_id: int = 100,
        mention_count: int = 0,
    ) -> InboundMessage:
        counter["next_id"] += 1
        return InboundMessage(
            message_id=MessageID(counter["next_id"]),
            guild_id=GuildID(guild_id),
            channel_id=ChannelID(channel_id),
            author_id=UserID(author_id),
            content=content,
            timestamp=datetime.now(timezone.utc),
            mention_count=mention_count,
        )

    return _make
