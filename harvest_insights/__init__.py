"""Harvest Insights: a rate-limited, cached gateway to the Harvest v2 API
with profitability, utilization, time aggregation and budget analytics."""

__version__ = "0.1.0"
