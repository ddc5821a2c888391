"""
Lexical automod filters.

:meth:`FilterPipeline.evaluate` runs the checks below in a fixed order and
reports only the first one that fires:

1. banned words (case-insensitive substring)
2. Discord invite links
3. any http(s) link
4. excessive capitals (messages longer than 10 characters only)
5. too many user and role mentions

Each check is a plain function of (message, policy); evaluation has no side
effects. A check that raises is logged and treated as not matching, so one
broken rule never blocks the rest.
"""

from __future__ import annotations

import re
from typing import Callable, Optional, Sequence, Tuple

from modstream.datatypes.moderation_datatypes import InboundMessage, Violation, ViolationKind
from modstream.datatypes.policy import Policy
from modstream.util.logger import get_logger

logger = get_logger("filter_pipeline")

INVITE_PATTERN = re.compile(
    r"(discord\.(gg|io|me|li)|discord(app)?\.com/invite)/\S+",
    re.IGNORECASE,
)
LINK_PATTERN = re.compile(r"https?://[^\s]+", re.IGNORECASE)
UPPERCASE_PATTERN = re.compile(r"[A-Z]")

CAPS_MIN_LENGTH = 10


def find_banned_term(message: InboundMessage, policy: Policy) -> Optional[Violation]:
    if not policy.banned_terms:
        return None
    lowered = message.content.lower()
    for term in sorted(policy.banned_terms):
        if term in lowered:
            return Violation.for_message(
                ViolationKind.BANNED_TERM, "Bad language detected", message, evidence=message.content
            )
    return None


def find_invite(message: InboundMessage, policy: Policy) -> Optional[Violation]:
    if not policy.invite_filter or not INVITE_PATTERN.search(message.content):
        return None
    return Violation.for_message(
        ViolationKind.INVITE, "Discord invite link detected", message, evidence=message.content
    )


def find_link(message: InboundMessage, policy: Policy) -> Optional[Violation]:
    if not policy.link_filter or not LINK_PATTERN.search(message.content):
        return None
    return Violation.for_message(ViolationKind.LINK, "Link detected", message, evidence=message.content)


def find_excessive_caps(message: InboundMessage, policy: Policy) -> Optional[Violation]:
    text = message.content
    if not policy.caps_filter or len(text) <= CAPS_MIN_LENGTH:
        return None
    ratio = len(UPPERCASE_PATTERN.findall(text)) / len(text)
    if ratio <= policy.caps_ratio_threshold:
        return None
    return Violation.for_message(
        ViolationKind.EXCESSIVE_CAPS, "Excessive caps detected", message, evidence=text
    )


def find_mention_spam(message: InboundMessage, policy: Policy) -> Optional[Violation]:
    if policy.max_mentions <= 0 or message.mention_count <= policy.max_mentions:
        return None
    return Violation.for_message(
        ViolationKind.MENTION_SPAM, "Mention spam detected", message, evidence=message.content
    )


FilterCheck = Callable[[InboundMessage, Policy], Optional[Violation]]

DEFAULT_CHECKS: Tuple[Tuple[str, FilterCheck], ...] = (
    ("banned_term", find_banned_term),
    ("invite", find_invite),
    ("link", find_link),
    ("excessive_caps", find_excessive_caps),
    ("mention_spam", find_mention_spam),
)


class FilterPipeline:
    """Ordered set of lexical checks; earlier checks pre-empt later ones."""

    def __init__(self, checks: Sequence[Tuple[str, FilterCheck]] = DEFAULT_CHECKS) -> None:
        self._checks = tuple(checks)

    def evaluate(self, message: InboundMessage, policy: Policy) -> Optional[Violation]:
        """Return the first violation found, or None when the message is clean."""
        if not policy.enabled:
            return None

        for name, check in self._checks:
            try:
                violation = check(message, policy)
            except Exception:
                logger.exception(
                    "[FILTER PIPELINE] Check %s failed on message %s; treating as clean", name, message.message_id
                )
                continue
            if violation is not None:
                logger.debug(
                    "[FILTER PIPELINE] %s matched message %s in guild %s",
                    violation.kind, message.message_id, message.guild_id,
                )
                return violation
        return None
