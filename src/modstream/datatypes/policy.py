"""
Per-guild automod policy.

Policies are stored as loose key/value rows (JSON-encoded values, camelCase
keys shared with the web dashboard). :class:`Policy` is the strongly-typed
form the rest of the pipeline works with; :meth:`Policy.from_settings` and
:func:`normalize_settings` are the only places raw rows are interpreted.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping

from modstream.errors import ConfigError, ValidationError
from modstream.util.logger import get_logger

logger = get_logger("policy")


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigError(key, value, "expected a boolean")


def _parse_count(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(key, value, "expected a non-negative integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ConfigError(key, value, "expected a non-negative integer") from None
    if not isinstance(value, int) or value < 0:
        raise ConfigError(key, value, "expected a non-negative integer")
    return value


def _parse_ratio(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(key, value, "expected a number between 0 and 1")
    try:
        ratio = float(value)
    except (TypeError, ValueError):
        raise ConfigError(key, value, "expected a number between 0 and 1") from None
    if not 0.0 <= ratio <= 1.0:
        raise ConfigError(key, value, "expected a number between 0 and 1")
    return ratio


def _parse_terms(key: str, value: Any) -> frozenset[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigError(key, value, "expected a list of words")
    terms = set()
    for term in value:
        if not isinstance(term, str):
            raise ConfigError(key, value, "every banned word must be a string")
        term = term.strip().lower()
        if term:
            terms.add(term)
    return frozenset(terms)


# stored key -> (Policy attribute, parser)
SETTING_FIELDS: Dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "enabled": ("enabled", _parse_bool),
    "badWords": ("banned_terms", _parse_terms),
    "spamThreshold": ("spam_threshold", _parse_count),
    "spamWindow": ("spam_window_ms", _parse_count),
    "maxMentions": ("max_mentions", _parse_count),
    "linkFilter": ("link_filter", _parse_bool),
    "inviteFilter": ("invite_filter", _parse_bool),
    "capsFilter": ("caps_filter", _parse_bool),
    "capsThreshold": ("caps_ratio_threshold", _parse_ratio),
}


@dataclass(frozen=True, slots=True)
class Policy:
    """Resolved automod configuration for one guild.

    A ``max_mentions`` or ``spam_threshold`` of 0 switches that check off.
    """

    enabled: bool = True
    banned_terms: frozenset[str] = field(default_factory=frozenset)
    spam_threshold: int = 5
    spam_window_ms: int = 5000
    max_mentions: int = 5
    link_filter: bool = False
    invite_filter: bool = True
    caps_filter: bool = False
    caps_ratio_threshold: float = 0.7

    def __post_init__(self) -> None:
        for name in ("spam_threshold", "spam_window_ms", "max_mentions"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if not 0.0 <= self.caps_ratio_threshold <= 1.0:
            raise ValueError("caps_ratio_threshold must be within [0, 1]")

    @classmethod
    def disabled(cls) -> "Policy":
        """Policy used when the stored configuration cannot be read."""
        return cls(enabled=False)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "Policy":
        """Overlay stored key/value settings onto the defaults.

        Malformed values are logged and leave that key at its default.
        Unknown keys are ignored.
        """
        overrides: Dict[str, Any] = {}
        for key, raw in settings.items():
            entry = SETTING_FIELDS.get(key)
            if entry is None:
                logger.debug("[POLICY] Ignoring unknown setting %r", key)
                continue
            attribute, parser = entry
            try:
                overrides[attribute] = parser(key, raw)
            except ConfigError as exc:
                logger.warning("[POLICY] Malformed setting, keeping default: %s", exc)
        return replace(cls(), **overrides)

    def to_settings(self) -> Dict[str, Any]:
        """Return the stored (camelCase, JSON-friendly) form of this policy."""
        settings: Dict[str, Any] = {}
        for key, (attribute, _) in SETTING_FIELDS.items():
            value = getattr(self, attribute)
            settings[key] = sorted(value) if isinstance(value, frozenset) else value
        return settings


def normalize_settings(partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a partial policy update and return its stored form.

    Raises:
        ValidationError: On an unknown key or a value that does not parse.
    """
    if not partial:
        raise ValidationError("policy update is empty")
    normalized: Dict[str, Any] = {}
    for key, raw in partial.items():
        entry = SETTING_FIELDS.get(key)
        if entry is None:
            raise ValidationError(f"unknown policy setting {key!r}")
        _, parser = entry
        try:
            value = parser(key, raw)
        except ConfigError as exc:
            raise ValidationError(str(exc)) from exc
        normalized[key] = sorted(value) if isinstance(value, frozenset) else value
    return normalized
