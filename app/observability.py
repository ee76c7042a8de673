"""HTTP request metrics and request ids."""

from __future__ import annotations

import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.logging import get_logger
from app.services.inbox.context import set_request_id

logger = get_logger(__name__)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

_SKIP_PATHS = {"/metrics", "/health"}


def _route_path(request: Request) -> str:
    # Label by route template so ids do not explode cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            if request.url.path not in _SKIP_PATHS:
                path = _route_path(request)
                elapsed = time.perf_counter() - start
                labels = {"method": request.method, "path": path, "status": str(status_code)}
                REQUEST_COUNT.labels(**labels).inc()
                REQUEST_LATENCY.labels(**labels).observe(elapsed)
                if status_code >= 500:
                    REQUEST_ERRORS.labels(**labels).inc()
                    logger.warning(
                        "http_request_failed method=%s path=%s status=%s request_id=%s",
                        request.method,
                        path,
                        status_code,
                        request_id,
                    )
