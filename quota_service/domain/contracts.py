"""Validated inputs accepted by the rule store."""

from __future__ import annotations

from dataclasses import dataclass

from .durations import seconds_for
from .errors import InvalidRuleError


def _validate_max(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidRuleError(f"max must be a positive integer, got {value!r}")
    return value


@dataclass(slots=True, frozen=True)
class CreateRuleInput:
    """Parameters required to create a rule; validated on construction."""

    key: str
    max: int
    time: str

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise InvalidRuleError("key must be a non-empty string")
        _validate_max(self.max)
        seconds_for(self.time)


@dataclass(slots=True, frozen=True)
class UpdateRulePatch:
    """Mutable rule fields. ``time`` is fixed at creation so counters are never orphaned."""

    max: int | None = None

    def __post_init__(self) -> None:
        if self.max is not None:
            _validate_max(self.max)
