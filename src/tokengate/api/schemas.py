"""Pydantic schemas for request / response serialisation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from tokengate.core.models import BucketSnapshot


class BucketResponse(BaseModel):
    id: str
    interval_millis: int
    capacity: int
    token_count: int | None = None
    remaining: int
    next_refill_at_millis: int | None = None

    @classmethod
    def from_snapshot(cls, snapshot: BucketSnapshot) -> BucketResponse:
        return cls(
            id=snapshot.id,
            interval_millis=snapshot.interval_millis,
            capacity=snapshot.capacity,
            token_count=snapshot.token_count,
            remaining=snapshot.remaining,
            next_refill_at_millis=snapshot.next_refill_at_millis,
        )


class AdmissionResponse(BaseModel):
    id: str
    allowed: bool


class ConfigLoadResponse(BaseModel):
    limit_count: int
    started: bool


class RunStateResponse(BaseModel):
    started: bool
    limit_count: int = Field(ge=0)


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    uptime_seconds: float
    started: bool
    bucket_count: int
    last_refill_error: str | None = None
