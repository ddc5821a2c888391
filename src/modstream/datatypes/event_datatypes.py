"""Moderation events as persisted in the event log and pushed to observers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Event types
WARNING = "warning"
KICK = "kick"
BAN = "ban"
TIMEOUT = "timeout"
AUTOMOD_ACTION = "automod_action"
AUTOMOD_TIMEOUT = "automod_timeout"

EVENT_TYPES = frozenset({WARNING, KICK, BAN, TIMEOUT, AUTOMOD_ACTION, AUTOMOD_TIMEOUT})


@dataclass(frozen=True, slots=True)
class EventDraft:
    """An event that has not yet been given a sequence id."""

    type: str
    guild_id: str
    subject_id: str
    moderator_id: str
    reason: str
    timestamp: int  # epoch milliseconds
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ModerationEvent:
    """An appended, immutable event."""

    sequence_id: int
    type: str
    guild_id: str
    subject_id: str
    moderator_id: str
    reason: str
    timestamp: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_draft(cls, sequence_id: int, draft: EventDraft) -> "ModerationEvent":
        return cls(
            sequence_id=sequence_id,
            type=draft.type,
            guild_id=draft.guild_id,
            subject_id=draft.subject_id,
            moderator_id=draft.moderator_id,
            reason=draft.reason,
            timestamp=draft.timestamp,
            payload=dict(draft.payload),
        )

    @classmethod
    def from_row(cls, row: Any) -> "ModerationEvent":
        """Build an event from an ``events`` table row (aiosqlite.Row or mapping)."""
        raw_payload = row["payload"]
        try:
            payload = json.loads(raw_payload) if raw_payload else {}
        except json.JSONDecodeError:
            payload = {"raw": raw_payload}
        return cls(
            sequence_id=int(row["id"]),
            type=row["type"],
            guild_id=row["guild_id"],
            subject_id=row["subject_id"],
            moderator_id=row["moderator_id"],
            reason=row["reason"],
            timestamp=int(row["timestamp"]),
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form for the live transport and webhooks."""
        return {
            "id": self.sequence_id,
            "type": self.type,
            "guildId": self.guild_id,
            "userId": self.subject_id,
            "moderatorId": self.moderator_id,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "data": self.payload,
        }


@dataclass(slots=True)
class EventQuery:
    """Filters for :meth:`EventLog.query`. ``None`` means "don't filter"."""

    type: Optional[str] = None
    guild_id: Optional[str] = None
    # Matches the event's subject or moderator
    user_id: Optional[str] = None
    since: Optional[int] = None
    limit: Optional[int] = None
