"""HTTP route definitions for the quota service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import Counter
from pydantic import BaseModel, Field

from ..domain.errors import (
    BackingStoreUnavailableError,
    DuplicateKeyError,
    InvalidRuleError,
    InvalidSegmentError,
)
from ..domain.rule import Rule, StatsSnapshot
from ..domain.service import QuotaService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

hit_decisions = Counter(
    "quota_hit_decisions_total",
    "Events recorded against quota rules, labelled by verdict.",
    ["outcome"],
)


class RuleResponse(BaseModel):
    """Serialised representation of a `Rule`."""

    id: str
    key: str
    max: int
    time: str

    @classmethod
    def from_domain(cls, rule: Rule) -> "RuleResponse":
        """Build a response model from the domain rule."""
        return cls(id=rule.id, key=rule.key, max=rule.max, time=rule.time)


class CreateRuleRequest(BaseModel):
    """Payload accepted when creating a quota rule."""

    key: str = Field(..., min_length=1, pattern=r"^[^/]+$")
    max: int = Field(..., gt=0)
    time: str


class UpdateRuleRequest(BaseModel):
    """Fields that may change on an existing rule."""

    max: int = Field(..., gt=0)


class StatsResponse(BaseModel):
    """Usage snapshot for a rule across tracked segments.

    ``allowed`` answers whether the next event would still be within quota.
    """

    key: str
    max: int
    time: str
    counters: dict[str, int]
    allowed: bool
    percent: str
    reset_in: int | None = None

    @classmethod
    def from_domain(cls, snapshot: StatsSnapshot, reset_in: int | None = None) -> "StatsResponse":
        return cls(
            key=snapshot.key,
            max=snapshot.max,
            time=snapshot.time,
            counters=snapshot.counters,
            allowed=snapshot.allowed,
            percent=snapshot.percent,
            reset_in=reset_in,
        )


class HitResponse(StatsResponse):
    """Usage snapshot returned after recording an event, with that event's verdict."""

    accepted: bool


def get_service(request: Request) -> QuotaService:
    """Resolve the `QuotaService` stored on the FastAPI application state."""
    service: QuotaService = request.app.state.quota_service
    return service


def _not_found(key: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"no rule for key {key!r}")


def _unavailable(exc: BackingStoreUnavailableError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


def _stats_or_404(service: QuotaService, key: str) -> StatsResponse:
    snapshot = service.stats(key)
    if snapshot is None:
        raise _not_found(key)
    return StatsResponse.from_domain(snapshot, service.reset_in(key))


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: CreateRuleRequest,
    service: QuotaService = Depends(get_service),
) -> RuleResponse:
    """Create a quota rule for a new key."""
    try:
        rule = service.create(payload.key, payload.max, payload.time)
    except DuplicateKeyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (InvalidSegmentError, InvalidRuleError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc
    logger.info("created quota rule %s for key %s (%d per %s)", rule.id, rule.key, rule.max, rule.time)
    return RuleResponse.from_domain(rule)


@router.get("/rules/{key}", response_model=RuleResponse)
def get_rule(key: str, service: QuotaService = Depends(get_service)) -> RuleResponse:
    """Return the rule configured for ``key``."""
    try:
        rule = service.find(key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc
    if rule is None:
        raise _not_found(key)
    return RuleResponse.from_domain(rule)


@router.patch("/rules/{key}", response_model=RuleResponse)
def update_rule(
    key: str,
    payload: UpdateRuleRequest,
    service: QuotaService = Depends(get_service),
) -> RuleResponse:
    """Change the ceiling of an existing rule."""
    try:
        if not service.update(key, max=payload.max):
            raise _not_found(key)
        rule = service.find(key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc
    if rule is None:
        raise _not_found(key)
    return RuleResponse.from_domain(rule)


@router.delete("/rules/{key}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(key: str, service: QuotaService = Depends(get_service)) -> Response:
    """Remove a rule along with all of its counters."""
    try:
        removed = service.remove(key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc
    if not removed:
        raise _not_found(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/rules/{key}/hits", response_model=HitResponse)
def record_hit(
    key: str,
    response: Response,
    service: QuotaService = Depends(get_service),
) -> HitResponse:
    """Record one event; ``accepted`` is the verdict for this event, ``allowed`` for the next one."""
    try:
        if not service.incr(key):
            raise _not_found(key)
        stats = _stats_or_404(service, key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc

    # the event that brings usage exactly to max is still within quota
    hit = HitResponse(**stats.model_dump(), accepted=stats.counters[stats.time] <= stats.max)
    hit_decisions.labels(outcome="allowed" if hit.accepted else "blocked").inc()
    if not hit.accepted:
        logger.info("quota exceeded for key %s: %s%% of %d per %s", key, hit.percent, hit.max, hit.time)
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS
        if hit.reset_in is not None:
            response.headers["Retry-After"] = str(hit.reset_in)
    return hit


@router.post("/rules/{key}/reset", response_model=StatsResponse)
def reset_rule(key: str, service: QuotaService = Depends(get_service)) -> StatsResponse:
    """Zero every counter for ``key`` without deleting the rule."""
    try:
        if not service.clear(key):
            raise _not_found(key)
        return _stats_or_404(service, key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc


@router.get("/rules/{key}/stats", response_model=StatsResponse)
def get_stats(key: str, service: QuotaService = Depends(get_service)) -> StatsResponse:
    """Return the current usage snapshot for ``key``."""
    try:
        return _stats_or_404(service, key)
    except BackingStoreUnavailableError as exc:
        raise _unavailable(exc) from exc
