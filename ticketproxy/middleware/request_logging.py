from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..proxy.headers import HeaderMap, redact

logger = logging.getLogger("ticketproxy.http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every inbound request and its outcome.
    - Sensitive headers are redacted before they reach the log.
    - Health probes are logged at DEBUG so they don't drown everything else.
    """

    def __init__(self, app, quiet_prefixes: tuple = ("/health",)) -> None:
        super().__init__(app)
        self.quiet_prefixes = quiet_prefixes

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path or "/"
        level = logging.DEBUG if path.startswith(self.quiet_prefixes) else logging.INFO
        started = time.perf_counter()

        if logger.isEnabledFor(level):
            logger.log(
                level,
                "Incoming request %s %s query=%r headers=%s",
                request.method,
                path,
                request.url.query,
                redact(HeaderMap.from_pairs(request.headers.raw)),
            )

        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception(
                "Request failed %s %s after %.2fms",
                request.method,
                path,
                (time.perf_counter() - started) * 1000,
            )
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        logger.log(
            logging.WARNING if response.status_code >= 500 else level,
            "Request completed %s %s status=%d duration=%.2fms",
            request.method,
            path,
            response.status_code,
            duration_ms,
        )
        response.headers.setdefault("X-Response-Time", f"{duration_ms:.2f}ms")
        return response
