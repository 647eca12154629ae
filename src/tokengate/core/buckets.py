"""Per-identifier bucket state and token consumption.

The table keeps two views of the same buckets: an index from identifier
to :class:`Bucket` for O(1) admission checks, and a binary heap ordered
by next refill instant so a refill pass only touches buckets that are
actually due.  Both views are rebuilt together on every reload and start,
and every refill re-inserts the bucket it advanced.

The table is not thread-safe on its own; :class:`~tokengate.core.throttler.Throttler`
serialises all calls through one lock.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from typing import TYPE_CHECKING

from tokengate.core.models import (
    Bucket,
    BucketSnapshot,
    ConfigurationError,
    InvalidStateError,
    LimitDefinition,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

# (next_refill_at_millis, sequence, bucket id)
_HeapEntry = tuple[int, int, str]


class BucketTable:
    """Owns every :class:`Bucket` and the run state that gates admission."""

    def __init__(self) -> None:
        self._buckets: dict[str, Bucket] = {}
        self._heap: list[_HeapEntry] = []
        self._sequence = itertools.count()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_config(self, definitions: Iterable[LimitDefinition]) -> None:
        """Replace every bucket with one per definition.

        The table is stopped and cleared before anything is validated, so
        a failed load leaves it empty.  Duplicate ids resolve to the last
        definition seen.
        """
        self.clear()

        buckets: dict[str, Bucket] = {}
        for index, definition in enumerate(definitions):
            if not isinstance(definition, LimitDefinition):
                raise ConfigurationError(
                    f"Entry {index} is not a LimitDefinition: {definition!r}"
                )
            if definition.id in buckets:
                logger.warning("Duplicate limit id '%s'; last definition wins", definition.id)
            buckets[definition.id] = Bucket.from_definition(definition)

        if not buckets:
            raise ConfigurationError("No limit definitions supplied")

        self._buckets = buckets
        for bucket in buckets.values():
            logger.info(
                "Loaded limit '%s': %d tokens every %dms",
                bucket.id,
                bucket.capacity,
                bucket.interval_millis,
            )

    def clear(self) -> None:
        """Drop all buckets and stop."""
        self._started = False
        self._buckets = {}
        self._heap = []

    def start(self, now_millis: int) -> None:
        """Fill every bucket and pin its refill phase to *now_millis*."""
        if not self._buckets:
            raise InvalidStateError("No configuration loaded")
        if self._started:
            raise InvalidStateError("Throttler already started")

        self._heap = []
        self._sequence = itertools.count()
        for bucket in self._buckets.values():
            bucket.initialize(now_millis)
            bucket.refill()
            self._push(bucket)
        self._started = True

    def stop(self) -> None:
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def allow(self, limit_id: str) -> bool:
        """Consume one token for *limit_id*; fail closed when stopped or unknown."""
        if not self._started:
            logger.debug("Throttler not started; rejecting '%s'", limit_id)
            return False
        bucket = self._buckets.get(limit_id)
        if bucket is None:
            logger.warning("No limit configured for '%s'; rejecting", limit_id)
            return False
        return bucket.consume()

    # ------------------------------------------------------------------
    # Refill scheduling support
    # ------------------------------------------------------------------

    def refill_due(self, now_millis: int) -> int:
        """Refill every bucket whose next refill is at or before *now_millis*.

        Buckets are visited in ascending refill order.  A bucket that is
        more than one interval overdue is refilled once per elapsed
        interval before the scan moves on.  Returns the number of refills
        performed.
        """
        refills = 0
        while self._heap and self._heap[0][0] <= now_millis:
            _, _, limit_id = heapq.heappop(self._heap)
            bucket = self._buckets[limit_id]
            try:
                while bucket.is_due(now_millis):
                    bucket.refill()
                    refills += 1
            finally:
                # Re-inserted even on failure so the next pass retries it.
                self._push(bucket)
        if refills:
            logger.debug("Refilled %d bucket interval(s) at %dms", refills, now_millis)
        return refills

    def earliest_refill_at(self) -> int | None:
        """Smallest pending refill instant, or ``None`` if nothing is scheduled."""
        if not self._heap:
            return None
        return self._heap[0][0]

    def _push(self, bucket: Bucket) -> None:
        if bucket.next_refill_at_millis is None:
            raise InvalidStateError(f"Bucket '{bucket.id}' has not been started")
        heapq.heappush(self._heap, (bucket.next_refill_at_millis, next(self._sequence), bucket.id))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get(self, limit_id: str) -> BucketSnapshot | None:
        bucket = self._buckets.get(limit_id)
        return bucket.snapshot() if bucket else None

    def snapshot(self) -> list[BucketSnapshot]:
        return [b.snapshot() for b in self._buckets.values()]

    def __len__(self) -> int:
        return len(self._buckets)

    def __contains__(self, limit_id: object) -> bool:
        return limit_id in self._buckets
