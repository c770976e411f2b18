"""Prometheus metrics for the gateway, cache, limiter and resolver.

Usage:
    from harvest_insights.observability.metrics import UPSTREAM_REQUESTS

    UPSTREAM_REQUESTS.labels(method="GET", status="200").inc()

All metrics live on a private registry; `get_metrics_text()` renders it in
the exposition format.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS
# =============================================================================

UPSTREAM_REQUESTS = Counter(
    name="harvest_upstream_requests_total",
    documentation="Upstream HTTP attempts",
    labelnames=["method", "status"],  # status code, or "error" for transport
    registry=REGISTRY,
)

CACHE_OPERATIONS = Counter(
    name="harvest_cache_operations_total",
    documentation="Response cache operations",
    labelnames=["operation"],  # hit, miss, set, evict, invalidate
    registry=REGISTRY,
)

RATE_LIMIT_EMBARGOES = Counter(
    name="harvest_rate_limit_embargoes_total",
    documentation="429 responses that started an embargo",
    registry=REGISTRY,
)

PAGES_FETCHED = Counter(
    name="harvest_pages_fetched_total",
    documentation="Pages fetched by auto-pagination",
    registry=REGISTRY,
)

ENTITY_RESOLUTIONS = Counter(
    name="harvest_entity_resolutions_total",
    documentation="Entity resolution queries",
    labelnames=["snapshot"],  # fresh, refreshed
    registry=REGISTRY,
)

CALCULATIONS = Counter(
    name="harvest_calculations_total",
    documentation="Analytics calculations run",
    labelnames=["calculator"],  # profitability, utilization, aggregation, budget
    registry=REGISTRY,
)

# =============================================================================
# GAUGES
# =============================================================================

CACHE_SIZE = Gauge(
    name="harvest_cache_entries",
    documentation="Entries currently held by the response cache",
    registry=REGISTRY,
)

RATE_LIMIT_REMAINING = Gauge(
    name="harvest_rate_limit_remaining",
    documentation="Requests left in the current sliding window",
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS
# =============================================================================

THROTTLE_WAIT = Histogram(
    name="harvest_throttle_wait_seconds",
    documentation="Time spent waiting for a rate limit permit",
    buckets=(0, 0.05, 0.1, 0.25, 0.5, 1, 5, 15, 30, float("inf")),
    registry=REGISTRY,
)

UPSTREAM_DURATION = Histogram(
    name="harvest_upstream_request_duration_seconds",
    documentation="Upstream HTTP attempt duration",
    labelnames=["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, float("inf")),
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    """Render all metrics in Prometheus text format."""
    return generate_latest(REGISTRY)

