"""
py-cord implementation of :class:`modstream.moderation.enforcement.PlatformAdapter`.

Discord errors are translated into :class:`EnforcementError` kinds so the
executor can record why an action failed:

=========================  ======================
``discord.Forbidden``      ``PERMISSION_DENIED``
``discord.NotFound``       ``NOT_FOUND``
other ``HTTPException``    ``NETWORK``
``aiohttp.ClientError``    ``NETWORK``
=========================  ======================
"""

from __future__ import annotations

import datetime
from contextlib import contextmanager
from typing import Iterator

import aiohttp
import discord

from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from modstream.errors import EnforcementError, EnforcementErrorKind
from modstream.util.logger import get_logger

logger = get_logger("discord_adapter")

NOTICE_COLOR = discord.Color.orange()


@contextmanager
def translate_discord_errors(action: str) -> Iterator[None]:
    """Re-raise Discord and transport failures as :class:`EnforcementError`."""
    try:
        yield
    except EnforcementError:
        raise
    except discord.Forbidden as exc:
        raise EnforcementError(EnforcementErrorKind.PERMISSION_DENIED, f"{action}: {exc.text or 'forbidden'}") from exc
    except discord.NotFound as exc:
        raise EnforcementError(EnforcementErrorKind.NOT_FOUND, f"{action}: {exc.text or 'not found'}") from exc
    except discord.HTTPException as exc:
        raise EnforcementError(EnforcementErrorKind.NETWORK, f"{action}: HTTP {exc.status}") from exc
    except (aiohttp.ClientError, OSError) as exc:
        raise EnforcementError(EnforcementErrorKind.NETWORK, f"{action}: {exc}") from exc


class DiscordPlatformAdapter:
    """Executes enforcement actions through a connected ``discord.Bot``."""

    def __init__(self, bot: discord.Bot) -> None:
        self._bot = bot

    async def _guild(self, guild_id: GuildID) -> discord.Guild:
        guild = self._bot.get_guild(guild_id.to_int())
        if guild is None:
            guild = await self._bot.fetch_guild(guild_id.to_int())
        return guild

    async def _member(self, guild_id: GuildID, user_id: UserID) -> discord.Member:
        guild = await self._guild(guild_id)
        member = guild.get_member(user_id.to_int())
        if member is None:
            member = await guild.fetch_member(user_id.to_int())
        return member

    async def delete_message(self, guild_id: GuildID, channel_id: ChannelID, message_id: MessageID) -> None:
        with translate_discord_errors("delete message"):
            channel = self._bot.get_channel(channel_id.to_int())
            if channel is None:
                channel = await self._bot.fetch_channel(channel_id.to_int())
            if not hasattr(channel, "get_partial_message"):
                raise EnforcementError(EnforcementErrorKind.NOT_FOUND, f"channel {channel_id} has no messages")
            await channel.get_partial_message(message_id.to_int()).delete()

    async def timeout_member(
        self, guild_id: GuildID, user_id: UserID, duration: datetime.timedelta, reason: str
    ) -> None:
        with translate_discord_errors("timeout member"):
            member = await self._member(guild_id, user_id)
            until = discord.utils.utcnow() + duration
            await member.timeout(until, reason=reason)

    async def kick_member(self, guild_id: GuildID, user_id: UserID, reason: str) -> None:
        with translate_discord_errors("kick member"):
            guild = await self._guild(guild_id)
            await guild.kick(discord.Object(id=user_id.to_int()), reason=reason)

    async def ban_member(
        self, guild_id: GuildID, user_id: UserID, reason: str, delete_message_seconds: int
    ) -> None:
        with translate_discord_errors("ban member"):
            guild = await self._guild(guild_id)
            await guild.ban(
                discord.Object(id=user_id.to_int()),
                reason=reason,
                delete_message_seconds=delete_message_seconds,
            )

    async def send_notice(self, guild_id: GuildID, user_id: UserID, title: str, description: str) -> None:
        with translate_discord_errors("send notice"):
            user = self._bot.get_user(user_id.to_int())
            if user is None:
                user = await self._bot.fetch_user(user_id.to_int())
            guild = self._bot.get_guild(guild_id.to_int())
            embed = discord.Embed(title=title, description=description, color=NOTICE_COLOR)
            if guild is not None:
                embed.set_footer(text=guild.name)
            await user.send(embed=embed)
