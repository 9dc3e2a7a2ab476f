"""Redis repository for quota rule records."""

from __future__ import annotations

import logging
import uuid
from typing import Final, Iterable

from redis import Redis
from redis.exceptions import RedisError, ResponseError, WatchError

from .domain.contracts import CreateRuleInput, UpdateRulePatch
from .domain.durations import SEGMENT_SECONDS
from .domain.errors import DuplicateKeyError, InvalidSegmentError
from .domain.rule import Rule
from .store import KeyLayout, decode, translate_store_errors

logger = logging.getLogger(__name__)

_RULE_FIELDS = ("key", "max", "time")


def generate_id() -> str:
    """Return a fresh UUID v4 string used as a rule identifier."""
    return str(uuid.uuid4())


class RuleRepository:
    """Redis-backed rule persistence keyed by caller-chosen rule keys."""

    _UPDATE_SCRIPT: Final[str] = """
    if redis.call('GET', KEYS[1]) == ARGV[1] and redis.call('EXISTS', KEYS[2]) == 1 then
        redis.call('HSET', KEYS[2], 'max', ARGV[2])
        return 1
    end
    return 0
    """

    def __init__(
        self,
        client: Redis,
        *,
        layout: KeyLayout | None = None,
        tracked_segments: Iterable[str] | None = None,
    ) -> None:
        """Store the Redis client, key layout and the segments rules may be created for."""
        self._client = client
        self._layout = layout or KeyLayout()
        self._tracked = tuple(tracked_segments) if tracked_segments is not None else tuple(SEGMENT_SECONDS)
        self._update_script = client.register_script(self._UPDATE_SCRIPT)

    def create(self, payload: CreateRuleInput) -> Rule:
        """Persist a new rule and return it.

        The ``key -> id`` mapping is claimed with ``SET NX`` before the metadata
        hash is written, so a half-created rule is never returned by :meth:`find`.
        """
        if payload.time not in self._tracked:
            raise InvalidSegmentError(payload.time)

        rule = Rule(id=generate_id(), key=payload.key, max=payload.max, time=payload.time)
        mapping_key = self._layout.rule_key(rule.key)
        with translate_store_errors("create rule"):
            if not self._client.set(mapping_key, rule.id, nx=True):
                raise DuplicateKeyError(rule.key)
            try:
                self._client.hset(
                    self._layout.rule_id(rule.id),
                    mapping={"key": rule.key, "max": rule.max, "time": rule.time},
                )
            except RedisError:
                self._client.delete(mapping_key)
                raise
        return rule

    def find_id(self, key: str) -> str | None:
        """Return the identifier mapped to ``key`` or ``None``."""
        with translate_store_errors("find rule id"):
            return decode(self._client.get(self._layout.rule_key(key)))

    def find(self, key: str) -> Rule | None:
        """Load the rule stored under ``key`` or return ``None``."""
        rule_id = self.find_id(key)
        if rule_id is None:
            return None
        with translate_store_errors("load rule"):
            raw = self._client.hgetall(self._layout.rule_id(rule_id))
        return self._map_record(rule_id, raw)

    def update(self, key: str, patch: UpdateRulePatch) -> bool:
        """Apply ``patch`` to an existing rule. Returns ``False`` when no rule exists.

        The write happens only while ``key`` still maps to the loaded id and its
        metadata hash exists, checked and applied in one atomic step, so an
        update racing :meth:`remove` never recreates an unreachable record.
        """
        rule_id = self.find_id(key)
        if rule_id is None:
            return False
        if patch.max is None:
            return self.find(key) is not None
        mapping_key = self._layout.rule_key(key)
        record_key = self._layout.rule_id(rule_id)
        with translate_store_errors("update rule"):
            try:
                updated = self._update_script(keys=[mapping_key, record_key], args=[rule_id, patch.max])
            except ResponseError as exc:
                message = str(exc).lower()
                if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                    return self._update_fallback(mapping_key, record_key, rule_id, patch.max)
                raise
        return int(updated) == 1

    def _update_fallback(self, mapping_key: str, record_key: str, rule_id: str, max_value: int) -> bool:
        """Fallback used when Lua is unavailable: an optimistic WATCH/MULTI transaction."""
        with self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(mapping_key, record_key)
                    if decode(pipe.get(mapping_key)) != rule_id or not pipe.exists(record_key):
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.hset(record_key, "max", max_value)
                    pipe.execute()
                    return True
                except WatchError:
                    continue

    def remove(self, key: str) -> bool:
        """Delete the rule mapping, its metadata and all of its counters."""
        rule_id = self.find_id(key)
        if rule_id is None:
            return False
        keys = [self._layout.rule_key(key), self._layout.rule_id(rule_id)]
        keys.extend(self._layout.counter(rule_id, segment) for segment in SEGMENT_SECONDS)
        with translate_store_errors("remove rule"):
            self._client.delete(*keys)
        return True

    def _map_record(self, rule_id: str, raw: dict) -> Rule | None:
        """Convert a Redis hash into a ``Rule``; incomplete records read as missing."""
        record = {decode(name): decode(value) for name, value in raw.items()}
        if any(record.get(name) is None for name in _RULE_FIELDS):
            logger.debug("rule %s has a key mapping but no complete metadata; treating as missing", rule_id)
            return None
        try:
            max_value = int(record["max"])
        except ValueError:
            logger.debug("rule %s has a non-integer max %r; treating as missing", rule_id, record["max"])
            return None
        return Rule(id=rule_id, key=record["key"], max=max_value, time=record["time"])
