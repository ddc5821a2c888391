"""Message listener Cog for Modstream.

Converts incoming guild messages into :class:`InboundMessage` records and
hands them to the moderation pipeline without waiting for the outcome.
"""

from typing import Optional

import discord
from discord.ext import commands

from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from modstream.datatypes.moderation_datatypes import InboundMessage
from modstream.errors import SequenceError
from modstream.runtime import ModerationRuntime
from modstream.util.logger import get_logger

logger = get_logger("message_listener_cog")


def to_inbound_message(message: discord.Message) -> Optional[InboundMessage]:
    """Build the pipeline's view of a Discord message.

    Returns None for messages the pipeline never looks at: direct messages,
    bot and webhook authors, and system messages.
    """
    if message.guild is None or message.author is None:
        return None
    if message.author.bot or message.webhook_id is not None:
        return None
    if message.type not in (discord.MessageType.default, discord.MessageType.reply):
        return None

    return InboundMessage(
        message_id=MessageID.from_message(message),
        guild_id=GuildID.from_guild(message.guild),
        channel_id=ChannelID.from_channel(message.channel),
        author_id=UserID.from_user(message.author),
        content=message.content or "",
        timestamp=message.created_at,
        mention_count=len(message.mentions) + len(message.role_mentions),
    )


class MessageListenerCog(commands.Cog):
    """Cog responsible for feeding guild messages into automod."""

    def __init__(self, discord_bot_instance, runtime: ModerationRuntime):
        self.discord_bot_instance = discord_bot_instance
        self.runtime = runtime
        logger.info("Message listener cog loaded")

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message) -> None:
        inbound = to_inbound_message(message)
        if inbound is None:
            return
        try:
            self.runtime.pipeline.submit(inbound)
        except SequenceError:
            logger.critical("[MESSAGE LISTENER] Event log is unusable; closing the bot")
            await self.discord_bot_instance.close()


def setup(discord_bot_instance, runtime: ModerationRuntime):
    """Register the cog with the running bot."""
    discord_bot_instance.add_cog(MessageListenerCog(discord_bot_instance, runtime))
