"""
Profitability calculator.

Revenue depends on the mode:
- time_based: billable hours x billable rate from time entries
- invoice_based: amounts of non-draft invoices
- hybrid: non-draft invoice amounts plus time-based revenue for billable
  entries not yet billed

Cost is hours x cost rate over billable entries (and non-billable ones when
requested). The cost rate comes from the entry, then the rate table, then 0.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

import structlog

from harvest_insights.analytics.base import BaseCalculator
from harvest_insights.analytics.grouping import GroupPath, build_group_tree, percent, round2
from harvest_insights.models.analytics import (
    AnalyticsMeta,
    Filters,
    GroupBy,
    ProfitabilityMetrics,
    ProfitabilityMode,
    ProfitabilityParams,
    ProfitabilityResponse,
)
from harvest_insights.models.harvest import Invoice, TimeEntry, items_of
from harvest_insights.models.rates import RateInfo
from harvest_insights.observability.context import api_call_scope
from harvest_insights.observability.metrics import CALCULATIONS
from harvest_insights.services.gateway import ApiGateway
from harvest_insights.services.rates_service import RatesService
from harvest_insights.utils.exceptions import HarvestInsightsError

logger = structlog.get_logger()

CALCULATION_DETAILS = {
    ProfitabilityMode.TIME_BASED: "Calculated using hours * rates from time entries",
    ProfitabilityMode.INVOICE_BASED: (
        "Calculated using actual invoice amounts vs time entry costs"
    ),
    ProfitabilityMode.HYBRID: (
        "Hybrid: uses invoice amounts where available, time-based otherwise"
    ),
}


@dataclass
class _Diagnostics:
    """Warning sink for one calculation, de-duplicating missing rates"""

    warnings: List[str] = field(default_factory=list)
    users_missing_rate: Set[int] = field(default_factory=set)

    def missing_rate(self, entry: TimeEntry) -> None:
        if entry.user.id in self.users_missing_rate:
            return
        self.users_missing_rate.add(entry.user.id)
        self.warnings.append(
            f"No cost rate found for user {entry.user.name} (ID: {entry.user.id})"
        )


class ProfitabilityCalculator(BaseCalculator):
    def __init__(
        self,
        gateway: ApiGateway,
        rates_service: Optional[RatesService] = None,
        max_pages: Optional[int] = None,
    ):
        super().__init__(gateway, max_pages)
        self.rates_service = rates_service or RatesService(gateway)

    async def calculate(
        self,
        params: ProfitabilityParams,
        rate_table: Optional[Dict[int, RateInfo]] = None,
    ) -> ProfitabilityResponse:
        """
        Compute profitability totals and optional grouped breakdown.

        Args:
            params: Mode, date range, filters and grouping
            rate_table: Cost rates by user id; fetched from the rates
                service when omitted

        Returns:
            ProfitabilityResponse with warnings and `_meta`
        """
        diagnostics = _Diagnostics()

        with api_call_scope() as calls:
            entries = await self.fetch_time_entries(
                params.date_range,
                client_id=params.client_id,
                project_id=params.project_id,
                user_id=params.user_id,
            )

            invoices: List[Invoice] = []
            if params.mode != ProfitabilityMode.TIME_BASED:
                invoices = await self._fetch_invoices(params)

            rates = await self._cost_rates(entries, rate_table, diagnostics)

        totals = self._compute(
            entries, invoices, params, rates, diagnostics
        )

        if params.mode == ProfitabilityMode.INVOICE_BASED and not invoices:
            diagnostics.warnings.append(
                "No invoices found for the date range; revenue is $0"
            )

        grouped_results = None
        if params.group_by:
            grouped_results = self._group(entries, invoices, params, rates)
            if params.mode != ProfitabilityMode.TIME_BASED and any(
                dim != GroupBy.CLIENT for dim in params.group_by
            ):
                diagnostics.warnings.append(
                    "Invoice amounts can only be attributed to client groupings; "
                    "other groups exclude invoice revenue"
                )

        CALCULATIONS.labels(calculator="profitability").inc()
        logger.info(
            "profitability_calculated",
            mode=params.mode.value,
            entries=len(entries),
            invoices=len(invoices),
            api_calls=calls.count,
        )

        return ProfitabilityResponse(
            mode=params.mode,
            date_range=params.date_range,
            filters=Filters(
                client_id=params.client_id,
                project_id=params.project_id,
                user_id=params.user_id,
            ),
            totals=totals,
            grouped_results=grouped_results,
            warnings=diagnostics.warnings,
            meta=AnalyticsMeta(
                entries_analyzed=len(entries),
                invoices_analyzed=len(invoices),
                calculation_details=CALCULATION_DETAILS[params.mode],
                api_calls_made=calls.count,
            ),
        )

    async def _fetch_invoices(self, params: ProfitabilityParams) -> List[Invoice]:
        result = await self.gateway.auto_paginate(
            self.gateway.list_invoices,
            items_of("invoices"),
            {
                **params.date_range.as_params(),
                "client_id": params.client_id,
                "project_id": params.project_id,
            },
            max_pages=self.max_pages,
        )
        return result.parse(Invoice)

    async def _cost_rates(
        self,
        entries: Sequence[TimeEntry],
        rate_table: Optional[Dict[int, RateInfo]],
        diagnostics: _Diagnostics,
    ) -> Dict[int, float]:
        if rate_table is not None:
            return {user_id: info.rate for user_id, info in rate_table.items()}
        if not entries:
            return {}

        try:
            table = await self.rates_service.get_user_rate_table()
        except HarvestInsightsError as e:
            logger.warning("rate_table_fetch_failed", error=str(e))
            diagnostics.warnings.append(
                "Could not fetch rate information; using entry rates only"
            )
            return {}
        finally:
            # Zero-rate users are reported per entry below
            self.rates_service.pop_warnings()
        return {user_id: info.rate for user_id, info in table.items()}

    def _compute(
        self,
        entries: Sequence[TimeEntry],
        invoices: Sequence[Invoice],
        params: ProfitabilityParams,
        rates: Dict[int, float],
        diagnostics: Optional[_Diagnostics],
    ) -> ProfitabilityMetrics:
        mode = params.mode
        hours = billable_hours = non_billable_hours = 0.0
        time_amount = cost = 0.0
        billed_hours = unbilled_hours = 0.0

        for entry in entries:
            hours += entry.hours
            if entry.billable:
                billable_hours += entry.hours
                rate = entry.billable_rate or 0.0
                if mode == ProfitabilityMode.TIME_BASED:
                    time_amount += entry.hours * rate
                elif mode == ProfitabilityMode.HYBRID:
                    if entry.is_billed:
                        billed_hours += entry.hours
                    else:
                        unbilled_hours += entry.hours
                        time_amount += entry.hours * rate
            else:
                non_billable_hours += entry.hours

            if entry.billable or params.include_non_billable:
                cost_rate = entry.cost_rate
                if cost_rate is None:
                    cost_rate = rates.get(entry.user.id, 0.0)
                if cost_rate == 0 and entry.hours > 0 and diagnostics is not None:
                    diagnostics.missing_rate(entry)
                cost += entry.hours * cost_rate

        invoiced = sum(inv.amount for inv in invoices if inv.state != "draft")
        if mode == ProfitabilityMode.TIME_BASED:
            revenue = time_amount
        elif mode == ProfitabilityMode.INVOICE_BASED:
            revenue = invoiced
        else:
            revenue = invoiced + time_amount
            if diagnostics is not None and billed_hours > 0 and unbilled_hours > 0:
                diagnostics.warnings.append(
                    f"Hybrid calculation: {billed_hours:.1f}h billed (invoice-based), "
                    f"{unbilled_hours:.1f}h unbilled (time-based)"
                )

        return build_metrics(hours, billable_hours, non_billable_hours, revenue, cost)

    def _group(
        self,
        entries: Sequence[TimeEntry],
        invoices: Sequence[Invoice],
        params: ProfitabilityParams,
        rates: Dict[int, float],
    ):
        def metrics_for(members: List[TimeEntry], path: GroupPath) -> ProfitabilityMetrics:
            node_invoices: List[Invoice] = []
            if all(dim == GroupBy.CLIENT for dim, _ in path):
                client_id = path[-1][1].id
                node_invoices = [inv for inv in invoices if inv.client.id == client_id]
            return self._compute(members, node_invoices, params, rates, None)

        return build_group_tree(
            entries,
            params.group_by,
            metrics_for,
            lambda m: m.billable_amount,
        )


def build_metrics(
    hours: float,
    billable_hours: float,
    non_billable_hours: float,
    billable_amount: float,
    cost: float,
) -> ProfitabilityMetrics:
    profit = billable_amount - cost
    return ProfitabilityMetrics(
        hours=round2(hours),
        billable_hours=round2(billable_hours),
        non_billable_hours=round2(non_billable_hours),
        billable_amount=round2(billable_amount),
        cost=round2(cost),
        profit=round2(profit),
        margin_percent=round2(percent(profit, billable_amount)),
        effective_rate=round2(billable_amount / billable_hours if billable_hours > 0 else 0.0),
        cost_rate_avg=round2(cost / hours if hours > 0 else 0.0),
    )
