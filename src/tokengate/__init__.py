"""TokenGate — Per-key token-bucket rate limiter.

Each configured identifier gets a hard budget of tokens per interval.
All buckets are refilled from a single timer that is always armed for
the earliest pending refill, so the cost of scheduling does not grow
with the number of identifiers.
"""

__version__ = "1.0.0"
