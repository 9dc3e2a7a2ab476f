"""Redis-backed fixed-window counters, one per (rule id, time segment)."""

from __future__ import annotations

from typing import Final, Sequence

from redis import Redis
from redis.exceptions import ResponseError

from .domain.durations import seconds_for, window_expiry
from .store import KeyLayout, decode, translate_store_errors


class WindowCounter:
    """Window-aligned counters whose expiry is set only by the increment that opens a window."""

    _LUA_SCRIPT: Final[str] = """
    local counts = {}
    for i, key in ipairs(KEYS) do
        local count = redis.call('INCR', key)
        if count == 1 or redis.call('TTL', key) == -1 then
            redis.call('EXPIREAT', key, tonumber(ARGV[i]))
        end
        counts[i] = count
    end
    return counts
    """

    def __init__(self, client: Redis, *, layout: KeyLayout | None = None) -> None:
        """Initialise the Redis client, key layout, and Lua script cache."""
        self._client = client
        self._layout = layout or KeyLayout()
        self._script = client.register_script(self._LUA_SCRIPT)

    def incr(self, rule_id: str, segments: Sequence[str], now: int) -> dict[str, int]:
        """Record one event in every segment's current window and return the new counts."""
        keys = [self._layout.counter(rule_id, segment) for segment in segments]
        expiries = [window_expiry(segment, now) for segment in segments]
        with translate_store_errors("increment counters"):
            try:
                counts = self._script(keys=keys, args=expiries)
            except ResponseError as exc:
                message = str(exc).lower()
                if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                    counts = self._incr_fallback(keys, expiries)
                else:
                    raise
        return {segment: int(count) for segment, count in zip(segments, counts)}

    def _incr_fallback(self, keys: Sequence[str], expiries: Sequence[int]) -> list[int]:
        """Fallback pure-Python implementation used when Lua is unavailable.

        The creating increment is identified by ``INCR`` returning 1, so only
        one concurrent caller ever arms the expiry for a given window.
        """
        counts: list[int] = []
        for key, expires_at in zip(keys, expiries):
            count = int(self._client.incr(key))
            if count == 1:
                self._client.expireat(key, expires_at)
            counts.append(count)
        return counts

    def clear(self, rule_id: str, segments: Sequence[str]) -> None:
        """Drop the counters so the next event opens a fresh window."""
        keys = [self._layout.counter(rule_id, segment) for segment in segments]
        with translate_store_errors("clear counters"):
            self._client.delete(*keys)

    def read(self, rule_id: str, segment: str) -> int:
        """Return the current window's count for ``segment`` (0 when expired or unset)."""
        seconds_for(segment)
        with translate_store_errors("read counter"):
            value = decode(self._client.get(self._layout.counter(rule_id, segment)))
        return int(value) if value is not None else 0

    def read_many(self, rule_id: str, segments: Sequence[str]) -> dict[str, int]:
        """Read several segment counters in a single round trip."""
        keys = [self._layout.counter(rule_id, segment) for segment in segments]
        with translate_store_errors("read counters"):
            values = self._client.mget(keys)
        return {
            segment: int(decode(value)) if value is not None else 0
            for segment, value in zip(segments, values)
        }

    def ttl(self, rule_id: str, segment: str) -> int | None:
        """Return seconds until ``segment``'s window resets, or ``None`` when no window is open."""
        with translate_store_errors("read counter ttl"):
            remaining = int(self._client.ttl(self._layout.counter(rule_id, segment)))
        return remaining if remaining >= 0 else None
