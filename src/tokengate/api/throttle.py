"""Request-path throttling middleware.

Identifies the caller by a request header (``X-Client-Id`` unless
``TOKENGATE_THROTTLE_HEADER`` says otherwise) and spends one token from
the matching limit for every request.  Callers whose limit is exhausted,
or who have no configured limit, get ``429 Too Many Requests``.

Requests without the header and the service's own operational and admin
endpoints pass through untouched.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from tokengate.observability.logging import get_logger

if TYPE_CHECKING:
    from starlette.responses import Response

    from tokengate.core.throttler import Throttler

logger = get_logger(__name__)

DEFAULT_HEADER = "X-Client-Id"

# Paths that are never throttled
_PUBLIC_PATHS = frozenset({"/health", "/metrics", "/docs", "/redoc", "/openapi.json"})
_ADMIN_PREFIXES = ("/limits", "/allow", "/config", "/start", "/stop")


def _is_exempt(path: str) -> bool:
    """Return True if the path should skip throttling."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path == prefix or path.startswith(prefix + "/") for prefix in _ADMIN_PREFIXES)


class ThrottleMiddleware(BaseHTTPMiddleware):
    """Reject requests whose caller has run out of tokens."""

    def __init__(self, app: object, throttler: Throttler, header: str | None = None) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._throttler = throttler
        self._header = header or os.environ.get("TOKENGATE_THROTTLE_HEADER") or DEFAULT_HEADER

    @property
    def header(self) -> str:
        return self._header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        client_id = request.headers.get(self._header)
        # A blank id is still an id; it has no limit and is rejected.
        if client_id is None or _is_exempt(request.url.path):
            return await call_next(request)

        if not self._throttler.allow(client_id):
            logger.info("Throttled request", extra={"limit_id": client_id, "path": request.url.path})
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": f"Rate limit exceeded for '{client_id}'"},
            )

        return await call_next(request)
