"""Prometheus metrics endpoint for quotestream.

Collector, bus and stream metrics are declared next to the code that
updates them. This module holds the HTTP request metrics and the
snapshot-age gauges, which are refreshed on every scrape.
"""

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from quotestream.services.events.bus import get_event_bus
from quotestream.services.events.schemas import now_ms

router = APIRouter()

# Request metrics
REQUEST_COUNT = Counter(
    "quotestream_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "quotestream_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Staleness of the cached snapshots
SNAPSHOT_AGE_SECONDS = Gauge(
    "quotestream_snapshot_age_seconds",
    "Seconds since the last cached event of each type",
    ["type"],
)

# Paths with unbounded cardinality are folded into their route template
_COLLAPSED_PREFIXES = {
    "/trade/orders/": "/trade/orders/{order_id}",
    "/admin/api/override/": "/admin/api/override/{symbol}",
}


def endpoint_label(path: str) -> str:
    for prefix, template in _COLLAPSED_PREFIXES.items():
        if path.startswith(prefix):
            return template
    return path


def record_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics."""
    endpoint = endpoint_label(endpoint)
    REQUEST_COUNT.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


def update_snapshot_ages() -> None:
    bus = get_event_bus()
    now = now_ms()
    for event_type in bus.cached_types():
        event = bus.get_last_by_type(event_type)
        if event is not None:
            SNAPSHOT_AGE_SECONDS.labels(type=event_type).set((now - event.ts) / 1000)


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from OpenAPI docs.
    """
    update_snapshot_ages()
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
