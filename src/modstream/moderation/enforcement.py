"""
Enforcement: turning violations and moderator commands into platform
actions plus exactly one event draft.

Every platform call goes through :meth:`EnforcementExecutor._call_platform`,
which bounds it with ``asyncio.wait_for`` and converts any failure into an
:class:`EnforcementErrorKind`. Failures never propagate; they are written
into the draft's ``enforcement`` payload and the result's ``ok`` flag, and
the draft is produced regardless so the moderation record stays complete.

=====================  ==========================  ===================
Input                  Platform action             Event type
=====================  ==========================  ===================
filter violation       delete message + warning    ``automod_action``
message spam           timeout + warning           ``automod_timeout``
``warn`` command       warning only                ``warning``
``kick`` command       kick                        ``kick``
``ban`` command        ban                         ``ban``
``timeout`` command    timeout                     ``timeout``
=====================  ==========================  ===================

Direct-message notices to the affected user are dispatched as background
tasks after the action and are strictly best-effort.
"""

from __future__ import annotations

import asyncio
import datetime
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from modstream.datatypes import event_datatypes as events
from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from modstream.datatypes.event_datatypes import EventDraft
from modstream.datatypes.moderation_datatypes import (
    AUTO_MODERATOR,
    ActionType,
    EnforcementResult,
    ModerationCommand,
    Violation,
    ViolationKind,
)
from modstream.errors import EnforcementError, EnforcementErrorKind, StorageError
from modstream.moderation.warning_ledger import WarningLedger
from modstream.util.logger import get_logger

logger = get_logger("enforcement")


class PlatformAdapter(Protocol):
    """Chat-platform operations the executor needs.

    Implementations raise :class:`EnforcementError` with a specific kind
    when they can tell why an action failed.
    """

    async def delete_message(self, guild_id: GuildID, channel_id: ChannelID, message_id: MessageID) -> None: ...

    async def timeout_member(
        self, guild_id: GuildID, user_id: UserID, duration: datetime.timedelta, reason: str
    ) -> None: ...

    async def kick_member(self, guild_id: GuildID, user_id: UserID, reason: str) -> None: ...

    async def ban_member(
        self, guild_id: GuildID, user_id: UserID, reason: str, delete_message_seconds: int
    ) -> None: ...

    async def send_notice(self, guild_id: GuildID, user_id: UserID, title: str, description: str) -> None: ...


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class _Outcome:
    ok: bool
    error_kind: Optional[EnforcementErrorKind] = None
    detail: Optional[str] = None

    def as_payload(self, action: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": action, "ok": self.ok}
        if self.error_kind is not None:
            payload["error"] = self.error_kind.value
        if self.detail:
            payload["detail"] = self.detail
        return payload


class EnforcementExecutor:
    """Applies violations and explicit commands through a :class:`PlatformAdapter`."""

    def __init__(
        self,
        adapter: PlatformAdapter,
        ledger: WarningLedger,
        *,
        action_timeout: float = 10.0,
        spam_timeout_minutes: int = 5,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self._adapter = adapter
        self._ledger = ledger
        self._action_timeout = action_timeout
        self._spam_timeout_minutes = spam_timeout_minutes
        self._clock = clock
        self._notices: Set[asyncio.Task] = set()

    async def apply(self, item: Union[Violation, ModerationCommand]) -> EnforcementResult:
        """Carry out ``item`` and return the result with its event draft."""
        if isinstance(item, Violation):
            if item.kind is ViolationKind.MESSAGE_SPAM:
                return await self._apply_spam(item)
            return await self._apply_filter_violation(item)
        if isinstance(item, ModerationCommand):
            return await self._apply_command(item)
        raise TypeError(f"cannot enforce {type(item).__name__}")

    async def shutdown(self) -> None:
        """Wait for outstanding notices to finish."""
        if self._notices:
            await asyncio.gather(*list(self._notices), return_exceptions=True)
        self._notices.clear()

    # ------------------------------------------------------------------
    # Automated actions
    # ------------------------------------------------------------------

    async def _apply_filter_violation(self, violation: Violation) -> EnforcementResult:
        timestamp = self._clock()

        if violation.channel_id is not None and violation.message_id is not None:
            deletion = await self._call_platform(
                "delete_message",
                lambda: self._adapter.delete_message(violation.guild_id, violation.channel_id, violation.message_id),
            )
        else:
            deletion = _Outcome(False, EnforcementErrorKind.NOT_FOUND, "no message reference")

        warning_count, warning_outcome = await self._record_warning(
            violation.guild_id, violation.subject, AUTO_MODERATOR, f"AutoMod: {violation.reason}", timestamp
        )

        payload: Dict[str, Any] = {
            "kind": violation.kind.value,
            "channel_id": _opt_str(violation.channel_id),
            "message_id": _opt_str(violation.message_id),
            "content": violation.evidence,
            "warnings": warning_count,
            "enforcement": deletion.as_payload("delete_message"),
        }
        if not warning_outcome.ok:
            payload["warning_error"] = warning_outcome.as_payload("record_warning")

        draft = EventDraft(
            type=events.AUTOMOD_ACTION,
            guild_id=str(violation.guild_id),
            subject_id=str(violation.subject),
            moderator_id=AUTO_MODERATOR,
            reason=violation.reason,
            timestamp=timestamp,
            payload=payload,
        )
        if warning_outcome.ok:
            self._notify(
                violation.guild_id,
                violation.subject,
                "Your message was removed",
                f"Reason: {violation.reason}\nYou now have {warning_count} warning(s).",
            )
        return self._result(draft, deletion, warning_outcome, warning_count)

    async def _apply_spam(self, violation: Violation) -> EnforcementResult:
        timestamp = self._clock()
        minutes = self._spam_timeout_minutes

        timeout = await self._call_platform(
            "timeout_member",
            lambda: self._adapter.timeout_member(
                violation.guild_id,
                violation.subject,
                datetime.timedelta(minutes=minutes),
                "AutoMod: Spam detected",
            ),
        )
        warning_count, warning_outcome = await self._record_warning(
            violation.guild_id, violation.subject, AUTO_MODERATOR, "AutoMod: Spam", timestamp
        )

        payload: Dict[str, Any] = {
            "kind": violation.kind.value,
            "channel_id": _opt_str(violation.channel_id),
            "count": violation.message_count,
            "duration_minutes": minutes,
            "warnings": warning_count,
            "enforcement": timeout.as_payload("timeout_member"),
        }
        if not warning_outcome.ok:
            payload["warning_error"] = warning_outcome.as_payload("record_warning")

        draft = EventDraft(
            type=events.AUTOMOD_TIMEOUT,
            guild_id=str(violation.guild_id),
            subject_id=str(violation.subject),
            moderator_id=AUTO_MODERATOR,
            reason=violation.reason,
            timestamp=timestamp,
            payload=payload,
        )
        if timeout.ok:
            self._notify(
                violation.guild_id,
                violation.subject,
                "You have been timed out",
                f"Reason: Spam detected\nDuration: {minutes} minute(s)",
            )
        return self._result(draft, timeout, warning_outcome, warning_count)

    # ------------------------------------------------------------------
    # Moderator commands
    # ------------------------------------------------------------------

    async def _apply_command(self, command: ModerationCommand) -> EnforcementResult:
        timestamp = self._clock()
        guild_id, target = command.guild_id, command.target_id
        payload: Dict[str, Any] = {}
        if command.channel_id is not None:
            payload["channel_id"] = str(command.channel_id)

        platform = _Outcome(True)
        warning_outcome = _Outcome(True)
        warning_count: Optional[int] = None

        match command.action:
            case ActionType.WARN:
                event_type = events.WARNING
                warning_count, warning_outcome = await self._record_warning(
                    guild_id, target, str(command.moderator_id), command.reason, timestamp
                )
                payload["warnings"] = warning_count
                if warning_outcome.ok:
                    self._notify(
                        guild_id, target, "You have been warned",
                        f"Reason: {command.reason}\nYou now have {warning_count} warning(s).",
                    )
            case ActionType.KICK:
                event_type = events.KICK
                platform = await self._call_platform(
                    "kick_member", lambda: self._adapter.kick_member(guild_id, target, command.reason)
                )
            case ActionType.BAN:
                event_type = events.BAN
                delete_seconds = command.delete_message_days * 86400
                payload["delete_message_days"] = command.delete_message_days
                platform = await self._call_platform(
                    "ban_member",
                    lambda: self._adapter.ban_member(guild_id, target, command.reason, delete_seconds),
                )
            case ActionType.TIMEOUT:
                event_type = events.TIMEOUT
                minutes = int(command.duration_minutes or 0)
                payload["duration_minutes"] = minutes
                platform = await self._call_platform(
                    "timeout_member",
                    lambda: self._adapter.timeout_member(
                        guild_id, target, datetime.timedelta(minutes=minutes), command.reason
                    ),
                )
                if platform.ok:
                    self._notify(
                        guild_id, target, "You have been timed out",
                        f"Reason: {command.reason}\nDuration: {minutes} minute(s)",
                    )
            case _:
                raise TypeError(f"unsupported action {command.action!r}")

        if command.action is not ActionType.WARN:
            payload["enforcement"] = platform.as_payload(f"{command.action.value}_member")
        if not warning_outcome.ok:
            payload["warning_error"] = warning_outcome.as_payload("record_warning")

        draft = EventDraft(
            type=event_type,
            guild_id=str(guild_id),
            subject_id=str(target),
            moderator_id=str(command.moderator_id),
            reason=command.reason,
            timestamp=timestamp,
            payload=payload,
        )
        return self._result(draft, platform, warning_outcome, warning_count)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call_platform(self, name: str, call: Callable[[], Awaitable[None]]) -> _Outcome:
        try:
            await asyncio.wait_for(call(), timeout=self._action_timeout)
            return _Outcome(True)
        except EnforcementError as exc:
            logger.warning("[ENFORCEMENT] %s failed (%s): %s", name, exc.kind, exc)
            return _Outcome(False, exc.kind, str(exc))
        except asyncio.TimeoutError:
            logger.warning("[ENFORCEMENT] %s timed out after %.1fs", name, self._action_timeout)
            return _Outcome(False, EnforcementErrorKind.TIMEOUT, f"timed out after {self._action_timeout}s")
        except Exception as exc:
            logger.exception("[ENFORCEMENT] %s raised unexpectedly", name)
            return _Outcome(False, EnforcementErrorKind.UNKNOWN, str(exc))

    async def _record_warning(
        self,
        guild_id: GuildID,
        user_id: UserID,
        moderator_id: str,
        reason: str,
        timestamp: int,
    ) -> tuple[Optional[int], _Outcome]:
        try:
            count = await self._ledger.record(guild_id, user_id, moderator_id, reason, timestamp)
        except StorageError as exc:
            logger.error("[ENFORCEMENT] Could not record warning for %s in %s: %s", user_id, guild_id, exc)
            return None, _Outcome(False, EnforcementErrorKind.STORAGE, str(exc))
        return count, _Outcome(True)

    def _notify(self, guild_id: GuildID, user_id: UserID, title: str, description: str) -> None:
        task = asyncio.create_task(self._send_notice(guild_id, user_id, title, description))
        self._notices.add(task)
        task.add_done_callback(self._notices.discard)

    async def _send_notice(self, guild_id: GuildID, user_id: UserID, title: str, description: str) -> None:
        try:
            await asyncio.wait_for(
                self._adapter.send_notice(guild_id, user_id, title, description),
                timeout=self._action_timeout,
            )
        except Exception as exc:
            logger.debug("[ENFORCEMENT] Could not notify %s in guild %s: %s", user_id, guild_id, exc)

    @staticmethod
    def _result(
        draft: EventDraft,
        platform: _Outcome,
        warning: _Outcome,
        warning_count: Optional[int],
    ) -> EnforcementResult:
        failed = platform if not platform.ok else warning
        return EnforcementResult(
            ok=platform.ok and warning.ok,
            draft=draft,
            error_kind=failed.error_kind,
            detail=failed.detail,
            warning_count=warning_count,
        )


def _opt_str(value: Optional[object]) -> Optional[str]:
    return str(value) if value is not None else None
