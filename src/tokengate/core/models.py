"""Domain models for the TokenGate rate limiter.

Defines the immutable limit definitions handed in by configuration, the
mutable per-identifier Bucket, read-only snapshots of bucket state, and
the error taxonomy shared by every layer.
"""

from __future__ import annotations

from dataclasses import dataclass

# Consumption never pushes a counter below this value.
TOKEN_FLOOR = -(2**63)


class ThrottlerError(Exception):
    """Base class for all TokenGate errors."""


class ConfigurationError(ThrottlerError, ValueError):
    """Raised when limit definitions are empty or malformed."""


class InvalidStateError(ThrottlerError, RuntimeError):
    """Raised when a lifecycle call does not match the current run state."""


class RefillFailure(ThrottlerError):
    """An unexpected fault during a scheduled refill pass.

    Built at the timer-firing boundary around the original exception
    (available as ``__cause__``); it is logged and recorded, never raised
    to callers.
    """


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class LimitDefinition:
    """One configured limit: *tokens_per_interval* requests every *interval_seconds*."""

    id: str
    interval_seconds: int
    tokens_per_interval: int

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            raise ConfigurationError(f"Limit id must be a non-empty string, got {self.id!r}")
        if not _is_int(self.interval_seconds) or self.interval_seconds <= 0:
            raise ConfigurationError(
                f"Limit '{self.id}': intervalSeconds must be a positive integer, "
                f"got {self.interval_seconds!r}"
            )
        if not _is_int(self.tokens_per_interval) or self.tokens_per_interval < 0:
            raise ConfigurationError(
                f"Limit '{self.id}': tokensPerInterval must be a non-negative integer, "
                f"got {self.tokens_per_interval!r}"
            )


@dataclass
class Bucket:
    """Mutable token state for a single identifier.

    ``token_count`` and ``next_refill_at_millis`` stay ``None`` until the
    owning table is started; :meth:`initialize` followed by :meth:`refill`
    gives them meaningful values.
    """

    id: str
    interval_millis: int
    capacity: int
    token_count: int | None = None
    next_refill_at_millis: int | None = None

    @classmethod
    def from_definition(cls, definition: LimitDefinition) -> Bucket:
        return cls(
            id=definition.id,
            interval_millis=definition.interval_seconds * 1000,
            capacity=definition.tokens_per_interval,
        )

    def initialize(self, now_millis: int) -> None:
        """Pin the refill phase of this bucket to *now_millis*."""
        self.next_refill_at_millis = now_millis

    def refill(self) -> None:
        """Reset tokens to capacity and advance the next refill by one interval."""
        if self.next_refill_at_millis is None:
            raise RuntimeError(f"Bucket '{self.id}' refilled before initialization")
        self.token_count = self.capacity
        self.next_refill_at_millis += self.interval_millis

    def consume(self) -> bool:
        """Take one token; True iff the remaining count is still non-negative.

        The decrement happens even when the bucket is already empty.
        """
        if self.token_count is None:
            return False
        if self.token_count > TOKEN_FLOOR:
            self.token_count -= 1
        return self.token_count >= 0

    def is_due(self, now_millis: int) -> bool:
        return self.next_refill_at_millis is not None and self.next_refill_at_millis <= now_millis

    def snapshot(self) -> BucketSnapshot:
        return BucketSnapshot(
            id=self.id,
            interval_millis=self.interval_millis,
            capacity=self.capacity,
            token_count=self.token_count,
            next_refill_at_millis=self.next_refill_at_millis,
        )


@dataclass(frozen=True)
class BucketSnapshot:
    """Read-only copy of a bucket's state at one instant."""

    id: str
    interval_millis: int
    capacity: int
    token_count: int | None
    next_refill_at_millis: int | None

    @property
    def remaining(self) -> int:
        """Tokens still available, never below zero."""
        return max(0, self.token_count or 0)
