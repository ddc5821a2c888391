"""
Moderation cog: slash commands for moderators and automod configuration.

Commands
- ``/warn``, ``/kick``, ``/ban``, ``/timeout`` build a
  :class:`ModerationCommand` and run it through the moderation pipeline,
  which records the event and notifies the guild webhook.
- ``/warnings`` lists a member's ten newest active warnings.
- ``/automod view|toggle|webhook`` shows and edits the guild's policy.

Permissions
- Permission checks happen here, before anything reaches the pipeline.
  Moderation commands also refuse to target the invoker, bots and
  administrators. Every reply is ephemeral.
"""

import datetime

import discord
from discord import Option
from discord.ext import commands

from modstream.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from modstream.datatypes.moderation_datatypes import (
    DEFAULT_REASON,
    MAX_DELETE_MESSAGE_DAYS,
    MAX_TIMEOUT_MINUTES,
    ActionType,
    ModerationCommand,
)
from modstream.errors import EnforcementErrorKind, SequenceError, StorageError, ValidationError
from modstream.moderation.moderation_pipeline import CommandOutcome
from modstream.runtime import ModerationRuntime
from modstream.util.logger import get_logger

logger = get_logger("moderation_cog")


def has_permissions(application_context: discord.ApplicationContext, **required_permissions) -> bool:
    """Return True if the invoking member holds every named guild permission."""
    if not isinstance(application_context.author, discord.Member):
        return False
    return all(
        getattr(application_context.author.guild_permissions, permission_name, False)
        for permission_name in required_permissions
    )


def describe_outcome(outcome: CommandOutcome, past_tense: str, target: discord.abc.User) -> str:
    """Human-readable summary of a command outcome for the invoking moderator."""
    result = outcome.result
    if result.ok:
        message = f"{target.mention} has been {past_tense}."
    elif result.error_kind is EnforcementErrorKind.STORAGE:
        message = f"The warning for {target.mention} could not be saved."
    else:
        kind = result.error_kind.value if result.error_kind else "unknown"
        message = f"Discord refused the {result.draft.type} against {target.mention}: {kind.replace('_', ' ')}."
    if result.warning_count is not None:
        message += f" Total warnings: {result.warning_count}."
    if outcome.event is None:
        message += " The action could not be written to the moderation log."
    return message


class ModerationActionCog(commands.Cog):
    """Cog containing moderation slash commands."""

    automod = discord.SlashCommandGroup("automod", "View or change this server's AutoMod settings.")

    def __init__(self, discord_bot_instance, runtime: ModerationRuntime):
        self.discord_bot_instance = discord_bot_instance
        self.runtime = runtime
        logger.info("Moderation cog loaded")

    async def check_moderation_permissions(
        self,
        application_context: discord.ApplicationContext,
        target_user: discord.Member,
        required_permission_name: str,
    ) -> bool:
        """Shared pre-checks for the member-targeting commands.

        Returns False after replying to the invoker when a check fails.
        """
        if not has_permissions(application_context, **{required_permission_name: True}):
            await application_context.send_followup("You do not have permission to use this command.")
            return False

        if not isinstance(target_user, discord.Member):
            await application_context.send_followup("The specified user is not a member of this server.")
            return False

        if target_user.id == application_context.user.id:
            await application_context.send_followup("You cannot perform moderation actions on yourself.")
            return False

        if target_user.bot:
            await application_context.send_followup("You cannot perform moderation actions on bots.")
            return False

        if target_user.guild_permissions.administrator:
            await application_context.send_followup("You cannot perform moderation actions against administrators.")
            return False

        return True

    async def run_command(
        self,
        ctx: discord.ApplicationContext,
        user: discord.Member,
        command: ModerationCommand,
        past_tense: str,
    ) -> None:
        """Run a command through the pipeline and report the outcome."""
        try:
            outcome = await self.runtime.pipeline.execute_command(command)
        except ValidationError as exc:
            await ctx.send_followup(f"Invalid command: {exc}")
            return
        except SequenceError:
            logger.critical("[MODERATION COG] Event log is unusable; closing the bot")
            await ctx.send_followup("The moderation log is unavailable. The bot is shutting down.")
            await self.discord_bot_instance.close()
            return
        except Exception:
            logger.exception("Error executing %s command", command.action)
            await ctx.send_followup("An error occurred while processing the command.")
            return

        await ctx.send_followup(describe_outcome(outcome, past_tense, user))

    def build_command(
        self,
        ctx: discord.ApplicationContext,
        action: ActionType,
        user: discord.Member,
        reason: str,
        **extra,
    ) -> ModerationCommand:
        return ModerationCommand(
            action=action,
            guild_id=GuildID.from_guild(ctx.guild),
            target_id=UserID.from_user(user),
            moderator_id=UserID.from_user(ctx.user),
            reason=reason,
            channel_id=ChannelID.from_channel(ctx.channel) if ctx.channel is not None else None,
            **extra,
        )

    @commands.slash_command(name="warn", description="Warn a user.")
    async def warn(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to warn.", required=True),  # type: ignore
        reason: Option(str, "Reason for the warning.", required=True),  # type: ignore
    ) -> None:
        """Record a warning. No platform action is taken."""
        await ctx.defer(ephemeral=True)
        if not await self.check_moderation_permissions(ctx, user, "moderate_members"):
            return
        await self.run_command(ctx, user, self.build_command(ctx, ActionType.WARN, user, reason), "warned")

    @commands.slash_command(name="warnings", description="Show a user's active warnings.")
    async def warnings(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to look up.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not has_permissions(ctx, moderate_members=True):
            await ctx.send_followup("You do not have permission to use this command.")
            return

        try:
            records = await self.runtime.warnings.list_active(UserID.from_user(user), GuildID.from_guild(ctx.guild), 10)
        except StorageError:
            logger.exception("Failed to load warnings for %s", user.id)
            await ctx.send_followup("Could not load warnings right now.")
            return

        if not records:
            await ctx.send_followup(f"{user.mention} has no warnings.")
            return

        lines = []
        for index, record in enumerate(records, start=1):
            date = datetime.datetime.fromtimestamp(record.timestamp / 1000, tz=datetime.timezone.utc)
            lines.append(f"**{index}.** {record.reason} - *{date:%Y-%m-%d}*")
        embed = discord.Embed(
            title=f"Warnings for {user}",
            description="\n".join(lines),
            color=discord.Color.orange(),
        )
        embed.set_footer(text=f"Total: {len(records)} warning(s)")
        await ctx.send_followup(embed=embed)

    @commands.slash_command(name="timeout", description="Timeout a user for a number of minutes.")
    async def timeout(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to timeout.", required=True),  # type: ignore
        duration: Option(int, "Duration in minutes.", min_value=1, max_value=MAX_TIMEOUT_MINUTES, required=True),  # type: ignore
        reason: Option(str, "Reason for the timeout.", default=DEFAULT_REASON),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self.check_moderation_permissions(ctx, user, "moderate_members"):
            return
        command = self.build_command(ctx, ActionType.TIMEOUT, user, reason, duration_minutes=duration)
        await self.run_command(ctx, user, command, "timed out")

    @commands.slash_command(name="kick", description="Kick a user from the server.")
    async def kick(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to kick.", required=True),  # type: ignore
        reason: Option(str, "Reason for the kick.", default=DEFAULT_REASON),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self.check_moderation_permissions(ctx, user, "kick_members"):
            return
        await self.run_command(ctx, user, self.build_command(ctx, ActionType.KICK, user, reason), "kicked")

    @commands.slash_command(name="ban", description="Ban a user from the server.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The user to ban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", default=DEFAULT_REASON),  # type: ignore
        delete_days: Option(
            int, "Days of their messages to delete.", min_value=0, max_value=MAX_DELETE_MESSAGE_DAYS, default=0
        ),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self.check_moderation_permissions(ctx, user, "ban_members"):
            return
        command = self.build_command(ctx, ActionType.BAN, user, reason, delete_message_days=delete_days)
        await self.run_command(ctx, user, command, "banned")

    # ------------------------------------------------------------------
    # /automod
    # ------------------------------------------------------------------

    @automod.command(name="view", description="Show the AutoMod settings for this server.")
    async def automod_view(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer(ephemeral=True)
        if not has_permissions(ctx, administrator=True):
            await ctx.send_followup("You need Administrator permission to use this command.")
            return

        policy = await self.runtime.policies.resolve(GuildID.from_guild(ctx.guild))
        embed = discord.Embed(title="AutoMod Settings", color=discord.Color.blue())
        embed.add_field(name="Enabled", value="Yes" if policy.enabled else "No", inline=True)
        embed.add_field(name="Spam Threshold", value=f"{policy.spam_threshold} / {policy.spam_window_ms} ms", inline=True)
        embed.add_field(name="Max Mentions", value=str(policy.max_mentions), inline=True)
        embed.add_field(name="Invite Filter", value="On" if policy.invite_filter else "Off", inline=True)
        embed.add_field(name="Link Filter", value="On" if policy.link_filter else "Off", inline=True)
        embed.add_field(
            name="Caps Filter",
            value=f"On (> {policy.caps_ratio_threshold:.0%})" if policy.caps_filter else "Off",
            inline=True,
        )
        embed.add_field(name="Banned Words", value=str(len(policy.banned_terms)), inline=True)
        await ctx.send_followup(embed=embed)

    @automod.command(name="toggle", description="Turn AutoMod on or off for this server.")
    async def automod_toggle(
        self,
        ctx: discord.ApplicationContext,
        enabled: Option(bool, "Whether AutoMod should be active.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not has_permissions(ctx, administrator=True):
            await ctx.send_followup("You need Administrator permission to use this command.")
            return

        try:
            await self.runtime.policies.update(GuildID.from_guild(ctx.guild), {"enabled": enabled})
        except Exception:
            logger.exception("Failed to toggle AutoMod for guild %s", ctx.guild.id)
            await ctx.send_followup("Could not save the AutoMod setting.")
            return
        await ctx.send_followup("AutoMod is now active." if enabled else "AutoMod has been disabled.")

    @automod.command(name="webhook", description="Set the webhook that receives moderation notifications.")
    async def automod_webhook(
        self,
        ctx: discord.ApplicationContext,
        url: Option(str, "Discord webhook URL.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not has_permissions(ctx, administrator=True):
            await ctx.send_followup("You need Administrator permission to use this command.")
            return

        try:
            await self.runtime.notifier.set_webhook(GuildID.from_guild(ctx.guild), url, UserID.from_user(ctx.user))
        except ValidationError as exc:
            await ctx.send_followup(f"Invalid webhook: {exc}")
            return
        except Exception:
            logger.exception("Failed to save webhook for guild %s", ctx.guild.id)
            await ctx.send_followup("Could not save the webhook.")
            return
        await ctx.send_followup("Moderation notifications will be posted to that webhook.")


def setup(discord_bot_instance, runtime: ModerationRuntime):
    """Register the cog with the running bot."""
    discord_bot_instance.add_cog(ModerationActionCog(discord_bot_instance, runtime))
