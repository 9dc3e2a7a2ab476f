from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class Rule:
    """A named quota policy: at most ``max`` events per ``time`` window for ``key``."""

    id: str
    key: str
    max: int
    time: str


@dataclass(slots=True)
class StatsSnapshot:
    """Usage of a rule across tracked segments plus the allow/deny verdict."""

    key: str
    max: int
    time: str
    counters: dict[str, int] = field(default_factory=dict)
    allowed: bool = True
    percent: str = "0.00"
