"""API route definitions — separated from the app factory for testability."""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException, Request, Response, status

from tokengate import __version__
from tokengate.api.schemas import (
    AdmissionResponse,
    BucketResponse,
    ConfigLoadResponse,
    HealthResponse,
    RunStateResponse,
)
from tokengate.config import LimitEntry
from tokengate.core.models import ConfigurationError, InvalidStateError
from tokengate.core.throttler import Throttler
from tokengate.observability import ThrottleMetrics
from tokengate.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Injected by the app factory
_throttler: Throttler | None = None
_metrics: ThrottleMetrics | None = None
_start_time: float = time.monotonic()


def configure(throttler: Throttler, metrics: ThrottleMetrics | None = None) -> None:
    """Wire the throttler and its metrics into the router (poor-man's DI)."""
    global _throttler, _metrics
    _throttler = throttler
    _metrics = metrics


def _get_throttler() -> Throttler:
    if _throttler is None:
        raise RuntimeError("Throttler not configured")
    return _throttler


# ------------------------------------------------------------------
# Health & metrics
# ------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, tags=["ops"])
async def health() -> HealthResponse:
    throttler = _get_throttler()
    failure = throttler.last_refill_failure
    return HealthResponse(
        version=__version__,
        uptime_seconds=round(time.monotonic() - _start_time, 2),
        started=throttler.started,
        bucket_count=len(throttler),
        last_refill_error=str(failure) if failure else None,
    )


@router.get("/metrics", tags=["ops"])
async def metrics() -> Response:
    content = _metrics.export() if _metrics is not None else ""
    return Response(content=content, media_type="text/plain; version=0.0.4")


# ------------------------------------------------------------------
# Limits & admission
# ------------------------------------------------------------------


@router.get("/limits", response_model=list[BucketResponse], tags=["limits"])
async def list_limits() -> list[BucketResponse]:
    return [BucketResponse.from_snapshot(s) for s in _get_throttler().snapshot()]


@router.get("/limits/{limit_id}", response_model=BucketResponse, tags=["limits"])
async def get_limit(limit_id: str) -> BucketResponse:
    snapshot = _get_throttler().get(limit_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Limit not found")
    return BucketResponse.from_snapshot(snapshot)


@router.post("/allow/{limit_id}", response_model=AdmissionResponse, tags=["limits"])
async def allow(limit_id: str) -> AdmissionResponse:
    """Spend one token for *limit_id* and report whether the request may proceed."""
    return AdmissionResponse(id=limit_id, allowed=_get_throttler().allow(limit_id))


@router.get("/check", status_code=status.HTTP_204_NO_CONTENT, tags=["limits"])
async def check(request: Request) -> Response:
    """Forward-auth endpoint for reverse proxies.

    :class:`ThrottleMiddleware` has already spent a token and answered 429
    if the caller is over budget; reaching this handler means the request
    was admitted.
    """
    header = request.app.state.throttle_header
    if header not in request.headers:
        raise HTTPException(status_code=400, detail=f"Missing {header} header")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ------------------------------------------------------------------
# Configuration & lifecycle
# ------------------------------------------------------------------


@router.put("/config", response_model=ConfigLoadResponse, tags=["admin"])
async def replace_config(body: list[LimitEntry]) -> ConfigLoadResponse:
    """Replace every limit and restart the refill schedule."""
    throttler = _get_throttler()
    try:
        throttler.load_config([entry.to_definition() for entry in body])
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=str(exc),
        ) from exc

    throttler.start()
    logger.info("Limits replaced over HTTP", extra={"limit_count": len(throttler)})
    return ConfigLoadResponse(limit_count=len(throttler), started=throttler.started)


@router.post("/start", response_model=RunStateResponse, tags=["admin"])
async def start() -> RunStateResponse:
    throttler = _get_throttler()
    try:
        throttler.start()
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RunStateResponse(started=throttler.started, limit_count=len(throttler))


@router.post("/stop", response_model=RunStateResponse, tags=["admin"])
async def stop() -> RunStateResponse:
    throttler = _get_throttler()
    throttler.stop()
    return RunStateResponse(started=throttler.started, limit_count=len(throttler))
