"""
Correlation IDs and request timing.

Every request gets a correlation ID (taken from X-Correlation-ID / X-Request-ID
when the caller sends one) that is echoed back in the response headers and
attached to every log line emitted while the request is processed. The
middleware also stamps `request.state.started_at` so error responses can
report how long the request ran before it failed.

Background work scheduled from a request (query tracking, gap detection)
runs after the response is sent; wrap it in `CorrelationContext` to keep
its log lines tied to the originating request.
"""

import contextvars
import time
import uuid
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


_correlation_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

INBOUND_HEADERS = ("X-Correlation-ID", "X-Request-ID")
RESPONSE_HEADER = "X-Correlation-ID"


def get_correlation_id() -> Optional[str]:
    """Correlation ID of the current request or background context, if any."""
    return _correlation_id_ctx.get()


def generate_correlation_id() -> str:
    """Short random ID; uniqueness only matters within a log search window."""
    return uuid.uuid4().hex[:8]


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Assign a correlation ID and a start timestamp to each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = next(
            (request.headers[h] for h in INBOUND_HEADERS if request.headers.get(h)),
            None,
        ) or generate_correlation_id()

        request.state.correlation_id = correlation_id
        request.state.started_at = time.perf_counter()

        token = _correlation_id_ctx.set(correlation_id)
        try:
            response = await call_next(request)
            response.headers[RESPONSE_HEADER] = correlation_id
            return response
        finally:
            _correlation_id_ctx.reset(token)


class CorrelationContext:
    """
    Set a correlation ID outside of an HTTP request.

    Example:
        with CorrelationContext(request_correlation_id):
            await detector.observe_query(observation)
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = _correlation_id_ctx.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _correlation_id_ctx.reset(self._token)
