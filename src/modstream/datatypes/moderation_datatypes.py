"""
Datatypes that flow through the moderation pipeline.

* :class:`InboundMessage`: read-only view of a chat message handed over by
  the gateway adapter.
* :class:`Violation`: a transient detection result from the filters or the
  spam tracker.
* :class:`ModerationCommand`: an already-authorized explicit action from a
  moderator (warn / kick / ban / timeout).
* :class:`EnforcementResult`: what the executor did and the event draft it
  produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from modstream.datatypes.discord_datatypes import ChannelID, GuildID, MessageID, UserID
from modstream.datatypes.event_datatypes import EventDraft
from modstream.errors import EnforcementErrorKind, ValidationError

AUTO_MODERATOR = "AUTO"
MAX_REASON_LENGTH = 512
MAX_TIMEOUT_MINUTES = 40320  # 28 days, the platform ceiling
MAX_DELETE_MESSAGE_DAYS = 7
EVIDENCE_LENGTH = 100
DEFAULT_REASON = "No reason provided"


class ActionType(Enum):
    """Explicit moderation actions a moderator can request."""

    WARN = "warn"
    KICK = "kick"
    BAN = "ban"
    TIMEOUT = "timeout"

    def __str__(self) -> str:
        return self.value


class ViolationKind(Enum):
    BANNED_TERM = "banned_term"
    INVITE = "invite"
    LINK = "link"
    EXCESSIVE_CAPS = "excessive_caps"
    MENTION_SPAM = "mention_spam"
    MESSAGE_SPAM = "message_spam"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A guild message as seen by the moderation pipeline."""

    message_id: MessageID
    guild_id: GuildID
    channel_id: ChannelID
    author_id: UserID
    content: str
    timestamp: datetime
    mention_count: int = 0

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)


@dataclass(frozen=True, slots=True)
class Violation:
    kind: ViolationKind
    reason: str
    subject: UserID
    guild_id: GuildID
    evidence: Optional[str] = None
    channel_id: Optional[ChannelID] = None
    message_id: Optional[MessageID] = None
    # Number of messages in the window when a spam violation fired
    message_count: Optional[int] = None

    @classmethod
    def for_message(
        cls,
        kind: ViolationKind,
        reason: str,
        message: InboundMessage,
        *,
        evidence: Optional[str] = None,
        message_count: Optional[int] = None,
    ) -> "Violation":
        return cls(
            kind=kind,
            reason=reason,
            subject=message.author_id,
            guild_id=message.guild_id,
            evidence=evidence[:EVIDENCE_LENGTH] if evidence is not None else None,
            channel_id=message.channel_id,
            message_id=message.message_id,
            message_count=message_count,
        )


@dataclass(slots=True)
class ModerationCommand:
    """An explicit moderator action, already authorized by the command adapter."""

    action: ActionType
    guild_id: GuildID
    target_id: UserID
    moderator_id: UserID
    reason: str = DEFAULT_REASON
    duration_minutes: Optional[int] = None
    delete_message_days: int = 0
    channel_id: Optional[ChannelID] = None

    def validate(self) -> None:
        """Reject malformed input before it reaches enforcement.

        A missing or blank reason on a kick, ban or timeout is replaced with
        :data:`DEFAULT_REASON`.

        Raises:
            ValidationError: If any field is out of range.
        """
        if not isinstance(self.action, ActionType):
            raise ValidationError(f"unknown action {self.action!r}")
        if str(self.moderator_id) == AUTO_MODERATOR:
            raise ValidationError("explicit commands need a real moderator")
        if self.target_id == self.moderator_id:
            raise ValidationError("moderators cannot act on themselves")

        if self.reason is None:
            self.reason = ""
        if not isinstance(self.reason, str):
            raise ValidationError("reason must be text")
        reason = self.reason.strip()
        if self.action is ActionType.WARN and not reason:
            raise ValidationError("a warning needs a reason")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"reason is longer than {MAX_REASON_LENGTH} characters")
        if not reason:
            self.reason = DEFAULT_REASON

        if self.action is ActionType.TIMEOUT:
            if self.duration_minutes is None:
                raise ValidationError("a timeout needs a duration")
            if not 1 <= self.duration_minutes <= MAX_TIMEOUT_MINUTES:
                raise ValidationError(f"timeout duration must be between 1 and {MAX_TIMEOUT_MINUTES} minutes")
        elif self.duration_minutes is not None:
            raise ValidationError(f"{self.action} does not take a duration")

        if self.action is ActionType.BAN:
            if not 0 <= self.delete_message_days <= MAX_DELETE_MESSAGE_DAYS:
                raise ValidationError(f"delete_message_days must be between 0 and {MAX_DELETE_MESSAGE_DAYS}")
        elif self.delete_message_days:
            raise ValidationError(f"{self.action} does not delete messages")


@dataclass(slots=True)
class EnforcementResult:
    """Outcome of one :meth:`EnforcementExecutor.apply` call.

    ``ok`` is False when the platform-side action failed; the draft is
    produced either way.
    """

    ok: bool
    draft: EventDraft
    error_kind: Optional[EnforcementErrorKind] = None
    detail: Optional[str] = None
    warning_count: Optional[int] = None
