"""Prometheus metrics, Sentry setup and the /metrics exposition.

Metric families:

- ``http_*``: inbound API traffic, labelled by route template
- ``graph_responses_total``: outbound Microsoft Graph responses by status
- ``transcript_*`` / ``webhook_*``: the discovery and notification pipeline
"""

from __future__ import annotations

import time

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

METRICS_PATH = "/metrics"

# Inbound

http_requests_total = Counter(
    "http_requests_total",
    "API requests served, by method, route template and status",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "API request latency; manual fetches include Graph polling",
    ["method", "endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0, 60.0),
)

# Outbound

graph_responses_total = Counter(
    "graph_responses_total",
    "Microsoft Graph responses received, by status class",
    ["status_class"],
)

# Pipeline

transcript_fetch_total = Counter(
    "transcript_fetch_total",
    "Transcript discovery attempts by auth mode and outcome",
    ["auth_mode", "outcome"],
)

transcript_poll_attempts = Histogram(
    "transcript_poll_attempts",
    "Transcript listings performed per discovery call",
    buckets=(1, 2, 3, 5, 8, 13),
)

webhook_notifications_total = Counter(
    "webhook_notifications_total",
    "Graph change notifications processed, by change type and outcome",
    ["change_type", "outcome"],
)


def record_graph_response(status_code: int) -> None:
    graph_responses_total.labels(status_class=f"{status_code // 100}xx").inc()


def _endpoint_label(request: Request) -> str:
    # Route templates keep meeting ids out of label values
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time every API request except scrapes of /metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            http_requests_total.labels(request.method, endpoint, str(status_code)).inc()
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)


_FILTERED = "[Filtered]"
_SENSITIVE_HEADERS = frozenset({"authorization", "cookie"})
_SENSITIVE_QUERY_KEYS = ("code=", "state=", "validationToken=")


def _scrub_event(event: dict, hint: dict) -> dict:
    """Remove bearer tokens and OAuth query values from Sentry events."""
    request = event.get("request") or {}

    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in headers:
            if name.lower() in _SENSITIVE_HEADERS:
                headers[name] = _FILTERED

    query = request.get("query_string")
    if isinstance(query, str) and any(key in query for key in _SENSITIVE_QUERY_KEYS):
        request["query_string"] = _FILTERED

    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize the Sentry SDK with FastAPI tracing.

    Production samples 10% of transactions; other environments sample all.
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        send_default_pii=False,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=_scrub_event,
    )


def get_metrics_response() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
