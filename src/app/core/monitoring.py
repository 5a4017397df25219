"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Deal room counters: drafts saved, publishes, conflict resolutions, expired drafts
- init_sentry(): Initialize Sentry with project-aware before_send callback
- get_metrics_response(): Response for the /metrics route
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Deal Room Metrics ────────────────────────────────────────────────────────

drafts_saved_total = Counter(
    "deal_room_drafts_saved_total",
    "Draft saves by mode",
    ["mode"],
)

publishes_total = Counter(
    "deal_room_publishes_total",
    "Publish attempts by outcome",
    ["outcome"],
)

conflicts_resolved_total = Counter(
    "deal_room_conflicts_resolved_total",
    "Conflict resolutions by effective strategy",
    ["resolution"],
)

drafts_expired_total = Counter(
    "deal_room_drafts_expired_total",
    "Drafts removed by the retention sweep",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Labels use the matched route template (e.g.
    ``/v1/projects/{project_id}/deal-room``) to keep cardinality bounded.
    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sentry Integration ───────────────────────────────────────────────────────


def _tag_project(event: dict, hint: dict) -> dict:
    """Tag Sentry events with the project id taken from the request URL."""
    url = (event.get("request") or {}).get("url") or ""
    marker = "/projects/"
    if marker in url:
        project_id = url.split(marker, 1)[1].split("/", 1)[0]
        if project_id:
            event.setdefault("tags", {})["project_id"] = project_id
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with project-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=_tag_project,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
