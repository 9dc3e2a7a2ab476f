"""Redis key layout, client construction, and store error translation."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import redis
from redis import Redis
from redis.exceptions import RedisError

from .config import Settings
from .domain.errors import BackingStoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeyLayout:
    """Builds namespaced Redis keys for rule records and counters."""

    prefix: str = "quota"

    def rule_key(self, key: str) -> str:
        return f"{self.prefix}:rules:key:{key}"

    def rule_id(self, rule_id: str) -> str:
        return f"{self.prefix}:rules:id:{rule_id}"

    def counter(self, rule_id: str, segment: str) -> str:
        return f"{self.prefix}:counters:{rule_id}:{segment}"


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Re-raise any Redis failure inside the block as ``BackingStoreUnavailableError``."""
    try:
        yield
    except RedisError as exc:
        raise BackingStoreUnavailableError(f"{operation} failed: {exc}") from exc


def decode(value: bytes | str | None) -> str | None:
    """Normalise a Redis reply to ``str`` regardless of ``decode_responses``."""
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def build_redis_client(settings: Settings) -> Redis:
    """Connect to the configured Redis instance and fail fast when it is unreachable."""
    client = redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
    with translate_store_errors("ping"):
        client.ping()
    logger.info("quota store configured for redis backend at %s", settings.redis_url)
    return client
