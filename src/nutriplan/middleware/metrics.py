"""Request metrics middleware.

Every request updates the Prometheus collectors served at ``/metrics``. When
the container's metrics service is enabled, each request is also stored as an
``api_request`` and ``response_time`` metric, plus ``api_error`` for status
codes of 400 and above.
"""

from __future__ import annotations

import logging
import re
import time

from fastapi import FastAPI, Request, Response
from prometheus_client import CollectorRegistry, Counter, Histogram, make_asgi_app
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from nutriplan.models.metric import MetricCreate, MetricType, MetricUnit

logger = logging.getLogger(__name__)

IGNORED_PATHS = frozenset({"/health", "/metrics", "/favicon.ico", "/robots.txt"})

# Hex ids, uuids and numbers collapse into one label
ID_SEGMENT = re.compile(r"/(?:[0-9a-fA-F]{24,32}|[0-9a-fA-F-]{36}|\d+)(?=/|$)")


def route_pattern(request: Request) -> str:
    """The matched route template, or the path with id segments replaced."""
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if template:
        return template
    return ID_SEGMENT.sub("/:id", request.url.path)


class ApiMetrics:
    """Prometheus collectors for the HTTP API, on their own registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.requests_total = Counter(
            "nutriplan_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "nutriplan_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )
        self.errors_total = Counter(
            "nutriplan_http_errors_total",
            "HTTP responses with status 400 or above",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )

    def observe(self, method: str, endpoint: str, status_code: int, seconds: float) -> None:
        status = str(status_code)
        self.requests_total.labels(method, endpoint, status).inc()
        self.request_duration.labels(method, endpoint).observe(seconds)
        if status_code >= 400:
            self.errors_total.labels(method, endpoint, status).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_metrics: ApiMetrics) -> None:  # noqa: ANN001
        super().__init__(app)
        self.api_metrics = api_metrics

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in IGNORED_PATHS or path.startswith("/metrics/"):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        endpoint = route_pattern(request)
        self.api_metrics.observe(request.method, endpoint, response.status_code, elapsed)
        await self._record(request, endpoint, response.status_code, elapsed * 1000)
        return response

    async def _record(
        self, request: Request, endpoint: str, status_code: int, duration_ms: float
    ) -> None:
        container = getattr(request.app.state, "container", None)
        if container is None or not container.metrics.enabled:
            return

        principal = getattr(request.state, "user", None)
        user_id = principal.subject_id if principal is not None else None
        tags = {
            "method": request.method,
            "endpoint": endpoint,
            "status_code": str(status_code),
        }
        items = [
            MetricCreate(type=MetricType.API_REQUEST, user_id=user_id, tags=tags),
            MetricCreate(
                type=MetricType.RESPONSE_TIME,
                value=duration_ms,
                unit=MetricUnit.MILLISECONDS,
                user_id=user_id,
                tags=tags,
            ),
        ]
        if status_code >= 400:
            items.append(MetricCreate(type=MetricType.API_ERROR, user_id=user_id, tags=tags))
        try:
            await container.metrics.record_batch(items)
        except Exception:
            logger.exception("Failed to record request metrics for %s", endpoint)


def setup_metrics(app: FastAPI) -> ApiMetrics:
    """Add the middleware and serve the Prometheus registry at ``/metrics``."""
    api_metrics = ApiMetrics()
    app.state.api_metrics = api_metrics
    app.add_middleware(MetricsMiddleware, api_metrics=api_metrics)
    app.mount("/metrics", make_asgi_app(registry=api_metrics.registry))
    logger.info("Request metrics enabled")
    return api_metrics
