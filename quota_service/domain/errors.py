"""Error taxonomy raised by the quota engine.

"Not found" is never an error: lookups return ``None`` or ``False`` instead.
"""

from __future__ import annotations


class QuotaError(Exception):
    """Base class for all quota engine failures."""


class InvalidSegmentError(QuotaError, ValueError):
    """Raised for a time-segment name the engine does not recognise."""

    def __init__(self, segment: object) -> None:
        super().__init__(f"invalid time segment: {segment!r}")
        self.segment = segment


class ParseError(QuotaError, ValueError):
    """Raised when a human-readable duration string cannot be parsed."""


class InvalidRuleError(QuotaError, ValueError):
    """Raised when rule parameters fail validation before any store write."""


class DuplicateKeyError(QuotaError):
    """Raised when creating a rule for a key that already has one."""

    def __init__(self, key: str) -> None:
        super().__init__(f"rule already exists for key {key!r}")
        self.key = key


class BackingStoreUnavailableError(QuotaError):
    """Raised when the backing store is unreachable or rejects a command."""
