"""Example: Throttling two clients with independent budgets.

Loads the sample limits, hammers both identifiers, then waits for the
first refill to show ID1 recovering while ID2 is still exhausted.
"""

import logging
import time
from pathlib import Path

from tokengate.core.throttler import Throttler
from tokengate.observability import ThrottleMetrics

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(message)s")
log = logging.getLogger(__name__)


def burst(throttler: Throttler, limit_id: str, calls: int) -> int:
    """Fire *calls* requests and return how many were admitted."""
    return sum(throttler.allow(limit_id) for _ in range(calls))


def main() -> None:
    metrics = ThrottleMetrics()
    with Throttler(metrics=metrics) as throttler:
        throttler.load_config_file(Path(__file__).with_name("limits.json"))
        throttler.start()

        log.info("t=0s   ID1 admitted %d/15", burst(throttler, "ID1", 15))
        log.info("t=0s   ID2 admitted %d/150", burst(throttler, "ID2", 150))

        time.sleep(6)
        log.info("t=6s   ID1 admitted %d/15 (refilled)", burst(throttler, "ID1", 15))
        log.info("t=6s   ID2 admitted %d/15 (not yet due)", burst(throttler, "ID2", 15))

        time.sleep(5)
        log.info("t=11s  ID2 admitted %d/150 (refilled)", burst(throttler, "ID2", 150))

    print("\n── Metrics ────────────────────────────────────")
    print(metrics.export())


if __name__ == "__main__":
    main()
