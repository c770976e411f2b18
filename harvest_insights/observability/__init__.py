"""Observability: request context, structured logging and Prometheus metrics.

Usage:
    from harvest_insights.observability import (
        api_call_scope,
        configure_logging,
        get_logger,
    )

    configure_logging(level="INFO")
    with api_call_scope() as calls:
        ...
    get_logger().info("operation_complete", api_calls=calls.count)
"""

from harvest_insights.observability.context import (
    api_call_scope,
    clear_correlation_id,
    correlation_id_context,
    get_api_call_count,
    get_correlation_id,
    record_api_call,
    set_correlation_id,
)
from harvest_insights.observability.logging import (
    add_correlation_id_processor,
    configure_logging,
    get_logger,
)
from harvest_insights.observability.metrics import (
    CACHE_OPERATIONS,
    CACHE_SIZE,
    CALCULATIONS,
    ENTITY_RESOLUTIONS,
    PAGES_FETCHED,
    RATE_LIMIT_EMBARGOES,
    RATE_LIMIT_REMAINING,
    THROTTLE_WAIT,
    UPSTREAM_DURATION,
    UPSTREAM_REQUESTS,
    get_metrics_text,
)

__all__ = [
    # Context
    "api_call_scope",
    "clear_correlation_id",
    "correlation_id_context",
    "get_api_call_count",
    "get_correlation_id",
    "record_api_call",
    "set_correlation_id",
    # Logging
    "add_correlation_id_processor",
    "configure_logging",
    "get_logger",
    # Metrics
    "CACHE_OPERATIONS",
    "CACHE_SIZE",
    "CALCULATIONS",
    "ENTITY_RESOLUTIONS",
    "PAGES_FETCHED",
    "RATE_LIMIT_EMBARGOES",
    "RATE_LIMIT_REMAINING",
    "THROTTLE_WAIT",
    "UPSTREAM_DURATION",
    "UPSTREAM_REQUESTS",
    "get_metrics_text",
]
