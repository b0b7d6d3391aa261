"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Meeting lifecycle counters (segments, late chunks, exports, finalizes)
- track_finalize(): Context manager timing one finalize run
- init_sentry(): Initialize Sentry with meeting-aware event tagging
- get_metrics_response(): Handler body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
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

# ── Meeting Metrics ──────────────────────────────────────────────────────────

segments_ingested_total = Counter(
    "meeting_segments_ingested_total",
    "Transcript segments persisted, by attribution rule",
    ["source"],
)

late_chunks_ignored_total = Counter(
    "meeting_late_chunks_ignored_total",
    "Chunks dropped because the meeting was no longer live",
)

export_attempts_total = Counter(
    "meeting_export_attempts_total",
    "Document export attempts",
    ["outcome"],
)

meetings_finalized_total = Counter(
    "meetings_finalized_total",
    "Finalize runs, by resulting export status",
    ["export_status"],
)

finalize_duration_seconds = Histogram(
    "meeting_finalize_duration_seconds",
    "Finalize duration in seconds, including export retries",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

live_subscribers = Gauge(
    "meeting_live_subscribers",
    "Connected live-stream clients",
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Records request count and duration per method/endpoint. Skips the
    /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Route template keeps meeting ids out of the label values
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


# ── Finalize Metrics Helper ─────────────────────────────────────────────────


@asynccontextmanager
async def track_finalize() -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks one finalize run.

    Usage:
        async with track_finalize() as tracker:
            result = await ...
            tracker["export_status"] = result.export_record.status.value

    Records the duration and a finalize count labelled with the export
    status set on the tracker ("error" when the block raised).
    """
    tracker: dict[str, Any] = {"export_status": "unknown"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        tracker["export_status"] = "error"
        raise
    finally:
        finalize_duration_seconds.observe(time.perf_counter() - start_time)
        meetings_finalized_total.labels(export_status=tracker["export_status"]).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with meeting-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events with the meeting bound in the structlog context."""
        meeting_id = structlog.contextvars.get_contextvars().get("meeting_id")
        if meeting_id:
            event.setdefault("tags", {})["meeting_id"] = meeting_id
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
