"""Quota service combining the rule store and window counters into allow/deny decisions."""

from __future__ import annotations

import time
from typing import Callable, Iterable

from .contracts import CreateRuleInput, UpdateRulePatch
from .durations import SEGMENT_SECONDS, now, seconds_for
from .rule import Rule, StatsSnapshot
from ..counters import WindowCounter
from ..repository import RuleRepository


class QuotaService:
    """Public operations of the quota engine, backed by Redis through its collaborators.

    The service keeps no state between calls; every answer is derived from the
    store, so any number of instances may share one Redis.
    """

    def __init__(
        self,
        repository: RuleRepository,
        counters: WindowCounter,
        *,
        tracked_segments: Iterable[str] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Store collaborators, the segments tracked for every rule, and the time source."""
        segments = tuple(tracked_segments) if tracked_segments is not None else tuple(SEGMENT_SECONDS)
        for segment in segments:
            seconds_for(segment)
        self._repository = repository
        self._counters = counters
        self._tracked = segments
        self._clock = clock

    @property
    def tracked_segments(self) -> tuple[str, ...]:
        return self._tracked

    def create(self, key: str, max: int, time: str) -> Rule:
        """Create a rule allowing ``max`` events per ``time`` segment for ``key``."""
        return self._repository.create(CreateRuleInput(key=key, max=max, time=time))

    def find(self, key: str) -> Rule | None:
        return self._repository.find(key)

    def find_id(self, key: str) -> str | None:
        return self._repository.find_id(key)

    def update(self, key: str, *, max: int | None = None) -> bool:
        """Change a rule's ``max``. Returns ``False`` when the rule does not exist."""
        return self._repository.update(key, UpdateRulePatch(max=max))

    def remove(self, key: str) -> bool:
        return self._repository.remove(key)

    def incr(self, key: str) -> bool:
        """Record one event against ``key``. Returns ``False`` for unknown keys."""
        rule = self._repository.find(key)
        if rule is None:
            return False
        self._counters.incr(rule.id, self._segments_for(rule), now(self._clock))
        return True

    def clear(self, key: str) -> bool:
        """Reset every tracked counter for ``key`` to zero. Returns ``False`` for unknown keys."""
        rule = self._repository.find(key)
        if rule is None:
            return False
        self._counters.clear(rule.id, self._segments_for(rule))
        return True

    def read(self, key: str, segment: str) -> int:
        """Return the current window's count for ``key`` in ``segment`` (0 for unknown keys)."""
        seconds_for(segment)
        rule_id = self._repository.find_id(key)
        if rule_id is None:
            return 0
        return self._counters.read(rule_id, segment)

    def stats(self, key: str) -> StatsSnapshot | None:
        """Return usage across tracked segments and the verdict for the rule's own segment.

        ``percent`` keeps rising past ``"100.00"`` when events are recorded over
        the limit so callers can see how far over quota a key is.
        """
        rule = self._repository.find(key)
        if rule is None:
            return None
        counters = self._counters.read_many(rule.id, self._segments_for(rule))
        used = counters[rule.time]
        return StatsSnapshot(
            key=rule.key,
            max=rule.max,
            time=rule.time,
            counters=counters,
            allowed=used < rule.max,
            percent=f"{used / rule.max * 100:.2f}",
        )

    def reset_in(self, key: str) -> int | None:
        """Seconds until the rule's own window resets, or ``None`` when no window is open."""
        rule = self._repository.find(key)
        if rule is None:
            return None
        return self._counters.ttl(rule.id, rule.time)

    def _segments_for(self, rule: Rule) -> tuple[str, ...]:
        if rule.time in self._tracked:
            return self._tracked
        return (*self._tracked, rule.time)
