"""
Error taxonomy for the moderation pipeline.

Only :class:`SequenceError` is meant to escape the pipeline; everything else
is either recovered where it is raised or recorded on the resulting event.
"""

from __future__ import annotations

from enum import Enum


class ModstreamError(Exception):
    """Base class for all Modstream errors."""


class ConfigError(ModstreamError):
    """A stored policy value could not be parsed or failed validation."""

    def __init__(self, key: str, value: object, message: str) -> None:
        super().__init__(f"{key}={value!r}: {message}")
        self.key = key
        self.value = value


class StorageError(ModstreamError):
    """Reading from or writing to the database failed."""


class SequenceError(StorageError):
    """The event log could not hand out a fresh sequence id. Fatal."""


class ValidationError(ModstreamError):
    """An explicit moderation command or policy update was malformed."""


class EnforcementErrorKind(Enum):
    """Why a platform action did not go through."""

    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    TIMEOUT = "timeout"
    STORAGE = "storage"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class EnforcementError(ModstreamError):
    """A platform adapter failed to carry out an action."""

    def __init__(self, kind: EnforcementErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind
