"""Time aggregation: plain sums of time entries per group."""

from typing import List, Sequence

import structlog

from harvest_insights.analytics.base import BaseCalculator
from harvest_insights.analytics.grouping import GroupPath, build_group_tree, round2
from harvest_insights.models.analytics import (
    AnalyticsMeta,
    Filters,
    TimeAggregationMetrics,
    TimeAggregationParams,
    TimeAggregationResponse,
)
from harvest_insights.models.harvest import TimeEntry
from harvest_insights.observability.context import api_call_scope
from harvest_insights.observability.metrics import CALCULATIONS

logger = structlog.get_logger()


def aggregation_metrics(entries: Sequence[TimeEntry]) -> TimeAggregationMetrics:
    hours = rounded = billable = amount = 0.0
    for entry in entries:
        hours += entry.hours
        rounded += entry.effective_rounded_hours
        if entry.billable:
            billable += entry.hours
            amount += entry.hours * (entry.billable_rate or 0.0)

    return TimeAggregationMetrics(
        hours=round2(hours),
        rounded_hours=round2(rounded),
        billable_hours=round2(billable),
        non_billable_hours=round2(hours - billable),
        entry_count=len(entries),
        billable_amount=round2(amount),
    )


class TimeAggregationCalculator(BaseCalculator):
    async def aggregate(self, params: TimeAggregationParams) -> TimeAggregationResponse:
        with api_call_scope() as calls:
            entries = await self.fetch_time_entries(
                params.date_range,
                client_id=params.client_id,
                project_id=params.project_id,
                user_id=params.user_id,
                task_id=params.task_id,
            )

        if params.billable_only:
            entries = [e for e in entries if e.billable]

        def metrics_for(
            members: List[TimeEntry], path: GroupPath
        ) -> TimeAggregationMetrics:
            return aggregation_metrics(members)

        grouped_results = build_group_tree(
            entries, params.group_by, metrics_for, lambda m: m.hours
        )

        warnings = []
        if not entries:
            warnings.append("No time entries found for the specified filters")

        CALCULATIONS.labels(calculator="aggregation").inc()
        logger.info(
            "time_aggregated",
            entries=len(entries),
            group_by=[dim.value for dim in params.group_by],
        )

        return TimeAggregationResponse(
            date_range=params.date_range,
            filters=Filters(
                client_id=params.client_id,
                project_id=params.project_id,
                user_id=params.user_id,
                task_id=params.task_id,
                billable_only=params.billable_only,
            ),
            group_by=params.group_by,
            totals=aggregation_metrics(entries),
            grouped_results=grouped_results,
            warnings=warnings,
            meta=AnalyticsMeta(entries_analyzed=len(entries), api_calls_made=calls.count),
        )
