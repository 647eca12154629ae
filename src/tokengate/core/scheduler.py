"""Single-timer refill scheduler.

Rather than one periodic timer per bucket, the scheduler keeps exactly
one one-shot timer outstanding, always armed for the earliest pending
refill across the whole table.  Each firing refills whatever is due and
then arms the next timer, forming a self-perpetuating chain whose
firings never overlap.

Every method except the timer callback expects the caller to hold the
shared lock; the callback takes it itself.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from tokengate.core.models import RefillFailure

if TYPE_CHECKING:
    from tokengate.core.buckets import BucketTable
    from tokengate.observability import ThrottleMetrics

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """The subset of :class:`threading.Timer` the scheduler relies on."""

    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


# Mirrors ``threading.Timer(interval_seconds, function, args)``.
TimerFactory = Callable[[float, Callable[..., None], list[Any]], TimerHandle]


@dataclass
class SchedulerConfig:
    """Tuning knobs for the scheduler."""

    daemon_timers: bool = True
    # Minimum wait before retrying after a failed refill pass
    failure_retry_millis: int = 1000


class RefillScheduler:
    """Drives refills for a :class:`BucketTable` from one outstanding timer."""

    def __init__(
        self,
        table: BucketTable,
        lock: threading.Lock,
        clock: Callable[[], int],
        timer_factory: TimerFactory | None = None,
        metrics: ThrottleMetrics | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self._table = table
        self._lock = lock
        self._clock = clock
        self._timer_factory: TimerFactory = timer_factory or threading.Timer
        self._metrics = metrics
        self._config = config or SchedulerConfig()
        self._timer: TimerHandle | None = None
        self._active = False
        self._generation = 0
        self._last_failure: RefillFailure | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def armed(self) -> bool:
        """True while a timer is outstanding.  Never more than one."""
        return self._timer is not None

    @property
    def last_failure(self) -> RefillFailure | None:
        """The most recent refill failure, if any pass has failed."""
        return self._last_failure

    def start(self) -> None:
        """Begin the timer chain.  Caller holds the lock."""
        self._generation += 1
        self._active = True
        self._last_failure = None
        self.arm_next()

    def stop(self) -> None:
        """Cancel the outstanding timer.  Idempotent; caller holds the lock.

        Bumping the generation makes any firing already waiting on the
        lock a no-op, so nothing can re-arm after this returns.
        """
        self._active = False
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def arm_next(self, min_delay_millis: int = 0) -> None:
        """Arm one timer for the earliest pending refill.  Caller holds the lock.

        *min_delay_millis* holds the timer back when the earliest refill is
        already overdue, e.g. while retrying after a failed pass.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        earliest = self._table.earliest_refill_at()
        if earliest is None:
            return

        delay_millis = max(min_delay_millis, earliest - self._clock())
        timer = self._timer_factory(delay_millis / 1000.0, self._fire, [self._generation])
        timer.daemon = self._config.daemon_timers
        timer.start()
        self._timer = timer
        logger.debug("Next refill armed in %dms", delay_millis)

    def _fire(self, generation: int) -> None:
        with self._lock:
            if not self._active or generation != self._generation or not self._table.started:
                logger.debug("Stale refill timer fired; ignoring")
                return

            self._timer = None
            retry_delay = 0
            try:
                refills = self._table.refill_due(self._clock())
            except Exception as exc:
                failure = RefillFailure(f"Refill pass failed: {exc}")
                failure.__cause__ = exc
                self._last_failure = failure
                retry_delay = self._config.failure_retry_millis
                logger.error("Refill pass failed; rescheduling", exc_info=exc)
                if self._metrics is not None:
                    self._metrics.record_refill_failure()
            else:
                if self._metrics is not None:
                    self._metrics.record_refill_pass(refills)

            try:
                self.arm_next(retry_delay)
            except Exception as exc:
                # Fail closed once the chain is broken.
                failure = RefillFailure(f"Could not re-arm refill timer: {exc}")
                failure.__cause__ = exc
                self._last_failure = failure
                self._active = False
                self._table.stop()
                logger.error("Could not re-arm refill timer; throttler stopped", exc_info=exc)
                if self._metrics is not None:
                    self._metrics.record_refill_failure()
                    self._metrics.set_started(False)
