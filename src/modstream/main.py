"""
Modstream Discord Bot
=====================

Rule-based automod for Discord guilds with a durable, ordered moderation
event log that is broadcast live to dashboards.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the project base directory.

    Resolution order:
    1. MODSTREAM_HOME environment variable, if set.
    2. The executable's directory when running frozen (PyInstaller, Nuitka).
    3. Otherwise the repository root (two levels above this package).
    """
    if env_home := os.getenv("MODSTREAM_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from modstream.bot.discord_adapter import DiscordPlatformAdapter
from modstream.configuration.app_configuration import app_config
from modstream.runtime import ModerationRuntime
from modstream.util.logger import get_logger, handle_exception


logger = get_logger("main")


def load_environment() -> str:
    """Load ``.env`` and return the Discord bot token.

    Raises
    ------
    SystemExit
        If ``DISCORD_BOT_TOKEN`` is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild messages (with content) and member lookups."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.members = True
    return intents


def load_cogs(discord_bot_instance: discord.Bot, runtime: ModerationRuntime) -> None:
    """Register all operational cogs with the bot."""
    from modstream.bot.cogs import message_listener, moderation_cmds

    message_listener.setup(discord_bot_instance, runtime)
    moderation_cmds.setup(discord_bot_instance, runtime)

    logger.info("All cogs loaded successfully.")


def create_bot() -> tuple[discord.Bot, ModerationRuntime]:
    """Instantiate the bot and the moderation runtime that acts through it."""
    bot = discord.Bot(intents=build_intents())
    runtime = ModerationRuntime(app_config, DiscordPlatformAdapter(bot))
    load_cogs(bot, runtime)

    @bot.event
    async def on_ready() -> None:
        logger.info("Logged in as %s (%s guilds)", bot.user, len(bot.guilds))

    return bot, runtime


async def shutdown_runtime(bot: discord.Bot, runtime: ModerationRuntime) -> None:
    """Close the Discord connection, then the moderation core."""
    try:
        if not bot.is_closed():
            await bot.close()
    except Exception as exc:
        logger.exception("Error while closing the Discord client: %s", exc)

    await runtime.shutdown()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the moderation core and the bot, returning an exit code."""
    token = load_environment()

    try:
        bot, runtime = create_bot()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        return 1

    try:
        logger.info("Opening database and event log...")
        await runtime.open()
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        await runtime.shutdown()
        return 1

    runtime.start()

    exit_code = 0
    logger.info("Attempting to connect to Discord...")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, runtime)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Modstream...")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1 if code is not None else 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
