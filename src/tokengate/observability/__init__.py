"""Prometheus metrics exporter for TokenGate observability.

Exposes admission and refill metrics in Prometheus text format.

Metrics exposed:
- tokengate_decisions_total: Admission decisions by limit id and outcome
- tokengate_refills_total: Bucket refills performed by the scheduler
- tokengate_refill_passes_total: Timer firings that ran a refill pass
- tokengate_refill_failures_total: Refill passes that raised
- tokengate_buckets: Buckets in the loaded configuration
- tokengate_started: 1 while the throttler admits requests

Usage:
    from tokengate.observability import ThrottleMetrics

    metrics = ThrottleMetrics()
    throttler = Throttler(metrics=metrics)

    # Expose via HTTP endpoint
    from fastapi import Response

    @app.get("/metrics")
    async def metrics_endpoint():
        return Response(content=metrics.export(), media_type="text/plain")
"""

from __future__ import annotations

import threading
from collections import defaultdict


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class ThrottleMetrics:
    """Collects and exports Prometheus-format metrics for TokenGate.

    Recording methods are called from request threads and from the
    refill timer thread, so every update takes an internal lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        # Counters
        self._decisions: dict[tuple[str, str], int] = defaultdict(int)
        self._refills: int = 0
        self._refill_passes: int = 0
        self._refill_failures: int = 0

        # Gauges
        self._buckets: int = 0
        self._started: int = 0

    def record_decision(self, limit_id: str, allowed: bool) -> None:
        """Count one admission decision."""
        decision = "allowed" if allowed else "denied"
        with self._lock:
            self._decisions[(limit_id, decision)] += 1

    def record_refill_pass(self, refills: int) -> None:
        """Count a timer firing and the bucket refills it performed."""
        with self._lock:
            self._refill_passes += 1
            self._refills += refills

    def record_refill_failure(self) -> None:
        with self._lock:
            self._refill_failures += 1

    def set_bucket_count(self, count: int) -> None:
        with self._lock:
            self._buckets = count

    def set_started(self, started: bool) -> None:
        with self._lock:
            self._started = 1 if started else 0

    def decisions(self, limit_id: str, decision: str) -> int:
        """Current value of the decision counter for *limit_id* / *decision*."""
        with self._lock:
            return self._decisions.get((limit_id, decision), 0)

    @property
    def refill_failures(self) -> int:
        with self._lock:
            return self._refill_failures

    def export(self) -> str:
        """Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        with self._lock:
            decisions = sorted(self._decisions.items())
            refills = self._refills
            passes = self._refill_passes
            failures = self._refill_failures
            buckets = self._buckets
            started = self._started

        lines = [
            "# HELP tokengate_decisions_total Admission decisions by limit id and outcome",
            "# TYPE tokengate_decisions_total counter",
        ]
        for (limit_id, decision), count in decisions:
            lines.append(
                f'tokengate_decisions_total{{id="{_escape(limit_id)}",decision="{decision}"}} {count}'
            )

        lines.extend(
            [
                "",
                "# HELP tokengate_refills_total Bucket refills performed by the scheduler",
                "# TYPE tokengate_refills_total counter",
                f"tokengate_refills_total {refills}",
                "",
                "# HELP tokengate_refill_passes_total Timer firings that ran a refill pass",
                "# TYPE tokengate_refill_passes_total counter",
                f"tokengate_refill_passes_total {passes}",
                "",
                "# HELP tokengate_refill_failures_total Refill passes that raised",
                "# TYPE tokengate_refill_failures_total counter",
                f"tokengate_refill_failures_total {failures}",
                "",
                "# HELP tokengate_buckets Buckets in the loaded configuration",
                "# TYPE tokengate_buckets gauge",
                f"tokengate_buckets {buckets}",
                "",
                "# HELP tokengate_started Whether the throttler is admitting requests (0/1)",
                "# TYPE tokengate_started gauge",
                f"tokengate_started {started}",
            ]
        )

        return "\n".join(lines) + "\n"
