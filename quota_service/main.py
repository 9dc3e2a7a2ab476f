"""FastAPI application wiring for the quota service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis import Redis
import uvicorn

from .api.routes import router as v1_router
from .config import Settings, get_settings
from .counters import WindowCounter
from .domain.service import QuotaService
from .repository import RuleRepository
from .store import KeyLayout, build_redis_client

settings = get_settings()


def build_quota_service(client: Redis, settings: Settings) -> QuotaService:
    """Assemble the quota service over a Redis client using the configured layout and segments."""
    layout = KeyLayout(prefix=settings.key_prefix)
    return QuotaService(
        RuleRepository(client, layout=layout, tracked_segments=settings.time_segments),
        WindowCounter(client, layout=layout),
        tracked_segments=settings.time_segments,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the Redis client and quota service for the app lifecycle."""
    client = build_redis_client(settings)
    app.state.redis = client
    app.state.quota_service = build_quota_service(client, settings)
    try:
        yield
    finally:
        client.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
