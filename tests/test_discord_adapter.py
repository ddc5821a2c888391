import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import discord
import pytest

from modstream.bot.discord_adapter import DiscordPlatformAdapter, translate_discord_errors
from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from modstream.errors import EnforcementError, EnforcementErrorKind


def http_response(status: int, reason: str) -> SimpleNamespace:
    return SimpleNamespace(status=status, reason=reason)


@pytest.mark.parametrize(
    "error, kind",
    [
        (discord.Forbidden(http_response(403, "Forbidden"), "Missing Permissions"), EnforcementErrorKind.PERMISSION_DENIED),
        (discord.NotFound(http_response(404, "Not Found"), "Unknown Message"), EnforcementErrorKind.NOT_FOUND),
        (discord.HTTPException(http_response(502, "Bad Gateway"), "upstream"), EnforcementErrorKind.NETWORK),
        (aiohttp.ClientError("reset"), EnforcementErrorKind.NETWORK),
        (ConnectionResetError("reset"), EnforcementErrorKind.NETWORK),
    ],
)
def test_discord_errors_are_translated(error, kind) -> None:
    with pytest.raises(EnforcementError) as excinfo:
        with translate_discord_errors("kick member"):
            raise error

    assert excinfo.value.kind is kind
    assert str(excinfo.value).startswith("kick member")


def test_unrelated_errors_pass_through() -> None:
    with pytest.raises(ValueError):
        with translate_discord_errors("kick member"):
            raise ValueError("bug")


def make_bot(guild=None, channel=None, user=None) -> SimpleNamespace:
    return SimpleNamespace(
        get_guild=MagicMock(return_value=guild),
        fetch_guild=AsyncMock(return_value=guild),
        get_channel=MagicMock(return_value=channel),
        fetch_channel=AsyncMock(return_value=channel),
        get_user=MagicMock(return_value=user),
        fetch_user=AsyncMock(return_value=user),
    )


@pytest.mark.asyncio
async def test_delete_message_uses_partial_message() -> None:
    partial = SimpleNamespace(delete=AsyncMock())
    channel = SimpleNamespace(get_partial_message=MagicMock(return_value=partial))
    adapter = DiscordPlatformAdapter(make_bot(channel=channel))

    await adapter.delete_message(GuildID(1), ChannelID(10), MessageID(555))

    channel.get_partial_message.assert_called_once_with(555)
    partial.delete.assert_awaited_once()


@pytest.mark.asyncio
async def test_delete_already_deleted_message_reports_not_found() -> None:
    partial = SimpleNamespace(
        delete=AsyncMock(side_effect=discord.NotFound(http_response(404, "Not Found"), "Unknown Message"))
    )
    channel = SimpleNamespace(get_partial_message=MagicMock(return_value=partial))
    adapter = DiscordPlatformAdapter(make_bot(channel=channel))

    with pytest.raises(EnforcementError) as excinfo:
        await adapter.delete_message(GuildID(1), ChannelID(10), MessageID(555))

    assert excinfo.value.kind is EnforcementErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_timeout_member_fetches_uncached_member() -> None:
    member = SimpleNamespace(timeout=AsyncMock())
    guild = SimpleNamespace(get_member=MagicMock(return_value=None), fetch_member=AsyncMock(return_value=member))
    adapter = DiscordPlatformAdapter(make_bot(guild=guild))

    before = discord.utils.utcnow()
    await adapter.timeout_member(GuildID(1), UserID(100), datetime.timedelta(minutes=5), "AutoMod: Spam detected")

    guild.fetch_member.assert_awaited_once_with(100)
    (until,), kwargs = member.timeout.await_args
    assert kwargs == {"reason": "AutoMod: Spam detected"}
    assert datetime.timedelta(minutes=5) <= until - before < datetime.timedelta(minutes=6)


@pytest.mark.asyncio
async def test_ban_passes_delete_seconds() -> None:
    guild = SimpleNamespace(ban=AsyncMock())
    adapter = DiscordPlatformAdapter(make_bot(guild=guild))

    await adapter.ban_member(GuildID(1), UserID(100), "raid", 86400)

    (target,), kwargs = guild.ban.await_args
    assert target.id == 100
    assert kwargs == {"reason": "raid", "delete_message_seconds": 86400}


@pytest.mark.asyncio
async def test_kick_without_permission() -> None:
    guild = SimpleNamespace(
        kick=AsyncMock(side_effect=discord.Forbidden(http_response(403, "Forbidden"), "Missing Permissions"))
    )
    adapter = DiscordPlatformAdapter(make_bot(guild=guild))

    with pytest.raises(EnforcementError) as excinfo:
        await adapter.kick_member(GuildID(1), UserID(100), "bye")

    assert excinfo.value.kind is EnforcementErrorKind.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_send_notice_dms_embed() -> None:
    user = SimpleNamespace(send=AsyncMock())
    guild = SimpleNamespace(name="Test Guild")
    adapter = DiscordPlatformAdapter(make_bot(guild=guild, user=user))

    await adapter.send_notice(GuildID(1), UserID(100), "You have been warned", "Reason: spam")

    embed = user.send.await_args.kwargs["embed"]
    assert embed.title == "You have been warned"
    assert embed.footer.text == "Test Guild"
