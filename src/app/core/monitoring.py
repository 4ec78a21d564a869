"""Prometheus HTTP metrics and Sentry error reporting.

Provides:
- MetricsMiddleware: request counts, latencies and in-flight requests
- init_sentry(): Sentry setup that tags events with the club and never
  ships uploaded document bytes
- get_metrics_response(): Prometheus exposition for the /metrics route

Pipeline metrics (ingestion runs, embedding calls, searches) live in
src.training.metrics and are exported through the same default registry.
"""

from __future__ import annotations

import time
from typing import Any

import sentry_sdk
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Gauge, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.app.core.tenant import get_current_tenant

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "tenant_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "tenant_id"],
    # Uploads stream whole PDFs, so the upper buckets reach further
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently being served",
    ["method"],
)

_UNMATCHED_ENDPOINT = "unmatched"


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Records Prometheus metrics for every HTTP request except /metrics.

    Requests are labelled with the X-Tenant-ID header and the matched route
    template (``/api/v1/training/documents/{document_id}``), never the raw
    path, so document ids do not explode label cardinality.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        tenant_id = request.headers.get("X-Tenant-ID") or "unknown"
        in_progress = http_requests_in_progress.labels(method=request.method)
        in_progress.inc()
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            in_progress.dec()
            endpoint = _route_template(request)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=str(status_code),
                tenant_id=tenant_id,
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint,
                tenant_id=tenant_id,
            ).observe(time.perf_counter() - start_time)


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or _UNMATCHED_ENDPOINT


# ── Sentry Integration ───────────────────────────────────────────────────────


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any]:
    """Tag events with the tenant and drop request bodies (document uploads)."""
    try:
        event.setdefault("tags", {})["tenant_id"] = get_current_tenant().tenant_id
    except RuntimeError:
        pass
    request_info = event.get("request")
    if isinstance(request_info, dict):
        request_info.pop("data", None)
    return event


def init_sentry(dsn: str, environment: str, release: str | None = None) -> None:
    """Initialize the Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
        release: Application version reported with events.
    """
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=_before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
