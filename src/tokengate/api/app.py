"""FastAPI application factory.

Creates and configures the ASGI application around a single
:class:`Throttler`, loading limits from ``TOKENGATE_CONFIG`` when set
and installing the request-path throttling middleware.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI

from tokengate import __version__
from tokengate.api import routes
from tokengate.api.throttle import DEFAULT_HEADER, ThrottleMiddleware
from tokengate.core.throttler import Throttler
from tokengate.observability import ThrottleMetrics
from tokengate.observability.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


def create_app(throttler: Throttler | None = None, metrics: ThrottleMetrics | None = None) -> FastAPI:
    """Build the configured FastAPI instance.

    When no *throttler* is given one is created; if ``TOKENGATE_CONFIG``
    names a limits file it is loaded and started immediately.
    """
    if throttler is None:
        metrics = metrics or ThrottleMetrics()
        throttler = Throttler(metrics=metrics)
        config_path = os.environ.get("TOKENGATE_CONFIG")
        if config_path:
            throttler.load_config_file(config_path)
            throttler.start()
        else:
            logger.warning("TOKENGATE_CONFIG not set; all requests are rejected until limits are loaded")

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        throttler.stop()

    app = FastAPI(
        title="TokenGate — Per-Key Rate Limiter",
        description=(
            "Token-bucket admission control with per-identifier budgets "
            "refilled at fixed interval boundaries from a single timer."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    header = os.environ.get("TOKENGATE_THROTTLE_HEADER") or DEFAULT_HEADER
    app.state.throttle_header = header
    app.add_middleware(ThrottleMiddleware, throttler=throttler, header=header)

    routes.configure(throttler, metrics)
    app.include_router(routes.router)

    return app


def main() -> None:
    """Entry-point for ``tokengate`` CLI."""
    configure_logging(
        log_level=os.environ.get("TOKENGATE_LOG_LEVEL", "INFO"),
        json_format=os.environ.get("TOKENGATE_LOG_JSON", "1") != "0",
    )
    uvicorn.run(
        "tokengate.api.app:create_app",
        factory=True,
        host=os.environ.get("TOKENGATE_HOST", "0.0.0.0"),
        port=int(os.environ.get("TOKENGATE_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
