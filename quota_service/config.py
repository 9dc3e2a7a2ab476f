from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import os


def _split_segments(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime configuration values exposed to the quota engine and FastAPI components."""

    app_name: str = os.getenv("APP_NAME", "quota-service")
    version: str = "0.1.0"
    http_host: str = os.getenv("HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("HTTP_PORT", "8000"))
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    redis_socket_timeout_seconds: float = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "2.0"))
    key_prefix: str = os.getenv("QUOTA_KEY_PREFIX", "quota")
    time_segments: tuple[str, ...] = field(
        default_factory=lambda: _split_segments(
            os.getenv("QUOTA_TIME_SEGMENTS", "second,minute,hour,day,week,month,year")
        )
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached Settings instance for the running process."""
    return Settings()
