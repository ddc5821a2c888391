"""
Best-effort webhook notifications for moderation events.

A guild can register one Discord webhook URL. After an event is appended,
:meth:`WebhookNotifier.notify` posts an embed describing it. Delivery is
fire-and-forget: the post runs as a background task and every failure is
logged and dropped, so it can never affect the event log.
"""

from __future__ import annotations

import asyncio
import datetime
import re
import time
from typing import Any, Dict, Optional, Set

import aiohttp

from modstream.database.db_connection import ConnectionManager
from modstream.datatypes import event_datatypes as events
from modstream.datatypes.discord_datatypes import GuildID, UserID
from modstream.datatypes.event_datatypes import ModerationEvent
from modstream.errors import ValidationError
from modstream.repositories.webhook_repo import WebhookRepository
from modstream.util.logger import get_logger

logger = get_logger("webhook_notifier")

WEBHOOK_URL_PATTERN = re.compile(r"^https://(ptb\.|canary\.)?discord(app)?\.com/api/webhooks/\d+/[\w-]+$")

EMBED_COLORS = {
    events.WARNING: 0xFFA500,
    events.KICK: 0xFF6B6B,
    events.BAN: 0xFF0000,
    events.TIMEOUT: 0xFFFF00,
    events.AUTOMOD_ACTION: 0xFF9900,
    events.AUTOMOD_TIMEOUT: 0xFF6600,
}

EMBED_TITLES = {
    events.WARNING: "User Warned",
    events.KICK: "User Kicked",
    events.BAN: "User Banned",
    events.TIMEOUT: "User Timed Out",
    events.AUTOMOD_ACTION: "AutoMod Action",
    events.AUTOMOD_TIMEOUT: "AutoMod Timeout",
}


def build_embed(event: ModerationEvent) -> Dict[str, Any]:
    """Render an event as a Discord embed payload."""
    moderator = "AutoMod" if event.moderator_id == "AUTO" else f"<@{event.moderator_id}>"
    fields = [
        {"name": "User", "value": f"<@{event.subject_id}>", "inline": True},
        {"name": "Moderator", "value": moderator, "inline": True},
        {"name": "Reason", "value": event.reason or "No reason provided", "inline": False},
    ]
    if "warnings" in event.payload and event.payload["warnings"] is not None:
        fields.append({"name": "Total Warnings", "value": str(event.payload["warnings"]), "inline": True})
    if event.payload.get("duration_minutes"):
        fields.append({"name": "Duration", "value": f"{event.payload['duration_minutes']} minute(s)", "inline": True})
    if event.payload.get("content"):
        fields.append({"name": "Message", "value": str(event.payload["content"])[:1024], "inline": False})
    enforcement = event.payload.get("enforcement")
    if isinstance(enforcement, dict) and not enforcement.get("ok", True):
        fields.append({"name": "Action Failed", "value": str(enforcement.get("error", "unknown")), "inline": True})

    return {
        "title": EMBED_TITLES.get(event.type, event.type),
        "color": EMBED_COLORS.get(event.type, 0x5865F2),
        "fields": fields,
        "footer": {"text": f"Event #{event.sequence_id}"},
        "timestamp": datetime.datetime.fromtimestamp(event.timestamp / 1000, tz=datetime.timezone.utc).isoformat(),
    }


class WebhookNotifier:
    """Posts event embeds to per-guild webhooks in the background."""

    def __init__(
        self,
        db: ConnectionManager,
        *,
        timeout_seconds: float = 5.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._db = db
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None
        self._tasks: Set[asyncio.Task] = set()

    async def set_webhook(self, guild_id: GuildID, url: str, added_by: UserID) -> None:
        """Register (or replace) a guild's webhook.

        Raises:
            ValidationError: If ``url`` is not a Discord webhook URL.
        """
        url = url.strip()
        if not WEBHOOK_URL_PATTERN.match(url):
            raise ValidationError("not a Discord webhook URL")
        async with self._db.transaction() as conn:
            await WebhookRepository.upsert(conn, str(guild_id), url, str(added_by), int(time.time() * 1000))
        logger.info("[WEBHOOK] Webhook updated for guild %s by %s", guild_id, added_by)

    async def remove_webhook(self, guild_id: GuildID) -> None:
        async with self._db.transaction() as conn:
            await WebhookRepository.delete(conn, str(guild_id))

    def notify(self, guild_id: GuildID | str, event: ModerationEvent) -> None:
        """Schedule delivery of ``event`` to the guild's webhook, if one is set."""
        task = asyncio.create_task(self._deliver(str(guild_id), event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, guild_id: str, event: ModerationEvent) -> None:
        try:
            async with self._db.read() as conn:
                url = await WebhookRepository.get_url(conn, guild_id)
            if not url:
                return

            session = self._get_session()
            async with session.post(url, json={"embeds": [build_embed(event)]}, timeout=self._timeout) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.warning(
                        "[WEBHOOK] Guild %s webhook rejected event %d: HTTP %d %s",
                        guild_id, event.sequence_id, response.status, body[:200],
                    )
                    return
            logger.debug("[WEBHOOK] Delivered event %d to guild %s", event.sequence_id, guild_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[WEBHOOK] Failed to deliver event %d to guild %s: %s", event.sequence_id, guild_id, exc)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def shutdown(self) -> None:
        """Let in-flight deliveries finish, then close the HTTP session."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        logger.info("[WEBHOOK] Notifier shut down")
