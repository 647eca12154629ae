"""Shared test fixtures.

Time is driven by hand: :class:`FakeClock` returns milliseconds and
:class:`FakeTimers` stands in for ``threading.Timer``, firing callbacks
only when a test advances the clock past their deadline.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from tokengate.core.models import LimitDefinition
from tokengate.core.throttler import Throttler
from tokengate.observability import ThrottleMetrics


class FakeClock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeTimer:
    def __init__(
        self,
        owner: FakeTimers,
        due_at: int,
        function: Callable[..., None],
        args: list[Any],
    ) -> None:
        self.owner = owner
        self.due_at = due_at
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    @property
    def pending(self) -> bool:
        return self.started and not self.cancelled and not self.fired

    def start(self) -> None:
        self.started = True
        self.owner.max_outstanding = max(self.owner.max_outstanding, len(self.owner.outstanding))

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        """Run the callback, even if cancelled (simulates an in-flight firing)."""
        self.fired = True
        self.function(*self.args)


class FakeTimers:
    """Timer factory with the ``threading.Timer(interval, function, args)`` signature."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.created: list[FakeTimer] = []
        self.max_outstanding = 0

    def __call__(self, interval: float, function: Callable[..., None], args: list[Any]) -> FakeTimer:
        timer = FakeTimer(self, self.clock.now + round(interval * 1000), function, args)
        self.created.append(timer)
        return timer

    @property
    def outstanding(self) -> list[FakeTimer]:
        return [t for t in self.created if t.pending]

    def advance(self, millis: int) -> None:
        """Move the clock forward, firing each timer as its deadline passes."""
        target = self.clock.now + millis
        while True:
            due = sorted(
                (t for t in self.outstanding if t.due_at <= target), key=lambda t: t.due_at
            )
            if not due:
                break
            timer = due[0]
            self.clock.now = max(self.clock.now, timer.due_at)
            timer.fire()
        self.clock.now = target


class FlakyTimers:
    """Wraps :class:`FakeTimers`, raising while ``failures_left`` is positive."""

    def __init__(self, timers: FakeTimers) -> None:
        self.timers = timers
        self.failures_left = 0

    def __call__(self, interval: float, function: Callable[..., None], args: list[Any]) -> FakeTimer:
        if self.failures_left:
            self.failures_left -= 1
            raise RuntimeError("can't start new thread")
        return self.timers(interval, function, args)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def timers(clock: FakeClock) -> FakeTimers:
    return FakeTimers(clock)


@pytest.fixture()
def flaky_timers(timers: FakeTimers) -> FlakyTimers:
    return FlakyTimers(timers)


@pytest.fixture()
def metrics() -> ThrottleMetrics:
    return ThrottleMetrics()


@pytest.fixture()
def throttler(clock: FakeClock, timers: FakeTimers, metrics: ThrottleMetrics) -> Throttler:
    return Throttler(clock=clock, timer_factory=timers, metrics=metrics)


@pytest.fixture()
def two_limits() -> list[LimitDefinition]:
    return [
        LimitDefinition(id="ID1", interval_seconds=5, tokens_per_interval=10),
        LimitDefinition(id="ID2", interval_seconds=10, tokens_per_interval=100),
    ]
