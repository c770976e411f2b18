"""Utilization calculator: logged hours against working-day capacity."""

from typing import List, Sequence

import structlog

from harvest_insights.analytics.base import BaseCalculator
from harvest_insights.analytics.grouping import (
    GroupPath,
    build_group_tree,
    percent,
    round2,
    working_days,
)
from harvest_insights.models.analytics import (
    AnalyticsMeta,
    Filters,
    UtilizationMetrics,
    UtilizationParams,
    UtilizationResponse,
    UtilizationSettings,
)
from harvest_insights.models.harvest import TimeEntry
from harvest_insights.observability.context import api_call_scope
from harvest_insights.observability.metrics import CALCULATIONS

logger = structlog.get_logger()


def utilization_metrics(
    entries: Sequence[TimeEntry], capacity_hours: float, days: int
) -> UtilizationMetrics:
    total = sum(e.hours for e in entries)
    billable = sum(e.hours for e in entries if e.billable)
    return UtilizationMetrics(
        total_hours=round2(total),
        billable_hours=round2(billable),
        non_billable_hours=round2(total - billable),
        capacity_hours=round2(capacity_hours),
        utilization_percent=round2(percent(total, capacity_hours)),
        billable_utilization_percent=round2(percent(billable, capacity_hours)),
        billable_ratio_percent=round2(percent(billable, total)),
        working_days=days,
    )


class UtilizationCalculator(BaseCalculator):
    async def calculate(self, params: UtilizationParams) -> UtilizationResponse:
        """
        Utilization for the date range.

        Capacity is working days x hours per day x active users, where the
        active users are the filtered user, or every user with entries in
        the range. Grouped nodes use the users present in the node.
        """
        with api_call_scope() as calls:
            entries = await self.fetch_time_entries(
                params.date_range,
                user_id=params.user_id,
                project_id=params.project_id,
                client_id=params.client_id,
            )

        days = working_days(
            params.date_range.from_date,
            params.date_range.to_date,
            params.exclude_weekends,
        )
        per_user = days * params.capacity_hours_per_day

        active_users = 1 if params.user_id else len({e.user.id for e in entries})
        totals = utilization_metrics(entries, per_user * active_users, days)

        warnings = []
        if days == 0:
            warnings.append("No working days in the date range; capacity is 0")

        grouped_results = None
        if params.group_by:

            def metrics_for(members: List[TimeEntry], path: GroupPath) -> UtilizationMetrics:
                users = len({e.user.id for e in members})
                return utilization_metrics(members, per_user * users, days)

            grouped_results = build_group_tree(
                entries, params.group_by, metrics_for, lambda m: m.total_hours
            )

        CALCULATIONS.labels(calculator="utilization").inc()
        logger.info(
            "utilization_calculated",
            entries=len(entries),
            working_days=days,
            users=active_users,
        )

        return UtilizationResponse(
            date_range=params.date_range,
            filters=Filters(
                user_id=params.user_id,
                project_id=params.project_id,
                client_id=params.client_id,
            ),
            settings=UtilizationSettings(
                capacity_hours_per_day=params.capacity_hours_per_day,
                exclude_weekends=params.exclude_weekends,
            ),
            totals=totals,
            grouped_results=grouped_results,
            warnings=warnings,
            meta=AnalyticsMeta(
                entries_analyzed=len(entries),
                users_included=active_users,
                api_calls_made=calls.count,
            ),
        )
