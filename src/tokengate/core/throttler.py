"""Thread-safe throttler composing the bucket table and refill scheduler.

Usage::

    throttler = Throttler()
    throttler.load_config_file("limits.json")
    throttler.start()
    ...
    if throttler.allow(client_id):
        handle(request)
    ...
    throttler.stop()

``load_config`` may be called again at any time, e.g. when the limits
file changes.  Reloading stops the throttler; ``start`` must be called
again or every request is rejected.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any

from tokengate.config import LimitConfigParser
from tokengate.core.buckets import BucketTable
from tokengate.core.models import ConfigurationError
from tokengate.core.scheduler import RefillScheduler, SchedulerConfig

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from tokengate.core.models import BucketSnapshot, LimitDefinition, RefillFailure
    from tokengate.core.scheduler import TimerFactory
    from tokengate.observability import ThrottleMetrics

logger = logging.getLogger(__name__)

UNKNOWN_LIMIT_LABEL = "<unknown>"


def monotonic_millis() -> int:
    """Default clock: monotonic time in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


class Throttler:
    """Per-key token-bucket rate limiter.

    Every public method runs under a single lock shared with the refill
    timer, so admission checks, refills and reloads are totally ordered
    and never observe a bucket mid-refill.
    """

    def __init__(
        self,
        clock: Callable[[], int] | None = None,
        timer_factory: TimerFactory | None = None,
        metrics: ThrottleMetrics | None = None,
        scheduler_config: SchedulerConfig | None = None,
    ) -> None:
        self._clock = clock or monotonic_millis
        self._metrics = metrics
        self._lock = threading.Lock()
        self._table = BucketTable()
        self._scheduler = RefillScheduler(
            self._table,
            self._lock,
            self._clock,
            timer_factory=timer_factory,
            metrics=metrics,
            config=scheduler_config,
        )
        self._parser = LimitConfigParser()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load_config(self, definitions: Iterable[LimitDefinition]) -> None:
        """Replace all limits.  Stops the throttler first."""
        with self._lock:
            self._stop_locked()
            try:
                self._table.load_config(definitions)
            finally:
                self._sync_gauges()
            logger.info("Loaded %d limit(s)", len(self._table))

    def load_config_file(self, filepath: str | Path) -> None:
        """Replace all limits with those read from a JSON or YAML file.

        The current limits are dropped before the file is read, so a
        file that fails to parse leaves the throttler empty.
        """
        with self._lock:
            self._stop_locked()
            self._table.clear()
            try:
                self._table.load_config(self._parser.parse_file(filepath))
            finally:
                self._sync_gauges()
            logger.info("Loaded %d limit(s) from %s", len(self._table), filepath)

    def load_config_text(self, content: str, fmt: str = "json") -> None:
        """Replace all limits with those parsed from a JSON or YAML string."""
        with self._lock:
            self._stop_locked()
            self._table.clear()
            try:
                if fmt == "json":
                    definitions = self._parser.parse_json(content)
                elif fmt in ("yaml", "yml"):
                    definitions = self._parser.parse_yaml(content)
                else:
                    raise ConfigurationError(f"Unsupported format: {fmt}")
                self._table.load_config(definitions)
            finally:
                self._sync_gauges()
            logger.info("Loaded %d limit(s)", len(self._table))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Fill every bucket and begin the refill timer chain.

        Raises :class:`InvalidStateError` when no limits are loaded or the
        throttler is already running.
        """
        with self._lock:
            self._table.start(self._clock())
            try:
                self._scheduler.start()
            except Exception:
                # Fail closed without a refill timer.
                self._stop_locked()
                raise
            self._sync_gauges()
            logger.info("Throttler started with %d limit(s)", len(self._table))

    def stop(self) -> None:
        """Stop admitting requests and cancel the refill timer.  Idempotent."""
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        was_started = self._table.started
        self._scheduler.stop()
        self._table.stop()
        self._sync_gauges()
        if was_started:
            logger.info("Throttler stopped")

    def _sync_gauges(self) -> None:
        if self._metrics is not None:
            self._metrics.set_bucket_count(len(self._table))
            self._metrics.set_started(self._table.started)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def allow(self, limit_id: str) -> bool:
        """Return whether a request for *limit_id* may proceed.

        Consumes one token.  Always returns ``False`` while stopped or for
        an unknown id; never raises.
        """
        with self._lock:
            allowed = self._table.allow(limit_id)
            known = limit_id in self._table
        if self._metrics is not None:
            # Unknown ids share one series.
            self._metrics.record_decision(limit_id if known else UNKNOWN_LIMIT_LABEL, allowed)
        return allowed

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        with self._lock:
            return self._table.started

    @property
    def refill_armed(self) -> bool:
        with self._lock:
            return self._scheduler.armed

    @property
    def last_refill_failure(self) -> RefillFailure | None:
        with self._lock:
            return self._scheduler.last_failure

    def get(self, limit_id: str) -> BucketSnapshot | None:
        with self._lock:
            return self._table.get(limit_id)

    def snapshot(self) -> list[BucketSnapshot]:
        with self._lock:
            return self._table.snapshot()

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def __enter__(self) -> Throttler:
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()
