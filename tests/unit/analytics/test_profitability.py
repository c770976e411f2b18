"""Tests for ProfitabilityCalculator"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from harvest_insights.analytics.profitability import ProfitabilityCalculator
from harvest_insights.models.analytics import (
    DateRange,
    GroupBy,
    ProfitabilityMode,
    ProfitabilityParams,
)
from harvest_insights.models.config import HarvestSettings
from harvest_insights.models.rates import RateInfo, RateSource
from harvest_insights.services.gateway import ApiGateway, SharedResources
from harvest_insights.utils.exceptions import UpstreamError

JANUARY = DateRange(from_date=date(2024, 1, 1), to_date=date(2024, 1, 31))


def entry(entry_id, hours, user=1, client=1, project=10, billable=True,
          billable_rate=100.0, cost_rate=50.0, is_billed=False):
    return {
        "id": entry_id,
        "spent_date": "2024-01-10",
        "hours": hours,
        "billable": billable,
        "is_billed": is_billed,
        "billable_rate": billable_rate,
        "cost_rate": cost_rate,
        "user": {"id": user, "name": f"User {user}"},
        "client": {"id": client, "name": f"Client {client}"},
        "project": {"id": project, "name": f"Project {project}"},
        "task": {"id": 1, "name": "Development"},
    }


def invoice(invoice_id, amount, client=1, state="paid"):
    return {
        "id": invoice_id,
        "amount": amount,
        "state": state,
        "client": {"id": client, "name": f"Client {client}"},
    }


def make_gateway(entries, invoices=()):
    gateway = ApiGateway(
        HarvestSettings(access_token="t", account_id="1"), shared=SharedResources()
    )
    gateway.list_time_entries = AsyncMock(
        return_value={"time_entries": entries, "next_page": None}
    )
    gateway.list_invoices = AsyncMock(
        return_value={"invoices": list(invoices), "next_page": None}
    )
    return gateway


def params(**kwargs):
    return ProfitabilityParams(date_range=JANUARY, **kwargs)


@pytest.mark.asyncio
async def test_time_based_single_entry():
    calculator = ProfitabilityCalculator(make_gateway([entry(1, 10)]))

    result = await calculator.calculate(params(), rate_table={})

    totals = result.totals
    assert totals.billable_amount == 1000
    assert totals.cost == 500
    assert totals.profit == 500
    assert totals.margin_percent == 50.0
    assert totals.effective_rate == 100
    assert totals.cost_rate_avg == 50
    assert result.warnings == []
    assert result.meta.entries_analyzed == 1
    assert result.meta.api_calls_made == 0


@pytest.mark.asyncio
async def test_non_billable_excluded_from_cost_by_default():
    entries = [entry(1, 10), entry(2, 5, billable=False)]
    calculator = ProfitabilityCalculator(make_gateway(entries))

    default = await calculator.calculate(params(), rate_table={})
    with_non_billable = await calculator.calculate(
        params(include_non_billable=True), rate_table={}
    )

    assert default.totals.hours == 15
    assert default.totals.non_billable_hours == 5
    assert default.totals.cost == 500
    assert with_non_billable.totals.cost == 750


@pytest.mark.asyncio
async def test_rate_table_fills_missing_cost_rate():
    calculator = ProfitabilityCalculator(
        make_gateway([entry(1, 4, cost_rate=None)])
    )
    table = {1: RateInfo(rate=25, source=RateSource.CONFIG_FILE)}

    result = await calculator.calculate(params(), rate_table=table)

    assert result.totals.cost == 100
    assert result.warnings == []


@pytest.mark.asyncio
async def test_missing_cost_rate_warns_once_per_user():
    entries = [
        entry(1, 2, user=7, cost_rate=None),
        entry(2, 3, user=7, cost_rate=None),
    ]
    calculator = ProfitabilityCalculator(make_gateway(entries))

    result = await calculator.calculate(params(), rate_table={})

    assert result.totals.cost == 0
    assert result.warnings == ["No cost rate found for user User 7 (ID: 7)"]


@pytest.mark.asyncio
async def test_rates_service_used_when_no_table():
    rates_service = MagicMock()
    rates_service.get_user_rate_table = AsyncMock(
        return_value={1: RateInfo(rate=30, source=RateSource.HARVEST_API)}
    )
    calculator = ProfitabilityCalculator(
        make_gateway([entry(1, 2, cost_rate=None)]), rates_service
    )

    result = await calculator.calculate(params())

    assert result.totals.cost == 60
    rates_service.pop_warnings.assert_called_once()


@pytest.mark.asyncio
async def test_rate_fetch_failure_is_a_warning():
    rates_service = MagicMock()
    rates_service.get_user_rate_table = AsyncMock(
        side_effect=UpstreamError("Harvest API error: 403", status_code=403)
    )
    calculator = ProfitabilityCalculator(make_gateway([entry(1, 2)]), rates_service)

    result = await calculator.calculate(params())

    assert "Could not fetch rate information; using entry rates only" in result.warnings
    assert result.totals.cost == 100


@pytest.mark.asyncio
async def test_invoice_based_ignores_drafts():
    gateway = make_gateway(
        [entry(1, 10)],
        [invoice(1, 1200), invoice(2, 800, state="draft"), invoice(3, 300, state="open")],
    )
    calculator = ProfitabilityCalculator(gateway)

    result = await calculator.calculate(
        params(mode=ProfitabilityMode.INVOICE_BASED), rate_table={}
    )

    assert result.totals.billable_amount == 1500
    assert result.totals.profit == 1000
    assert result.meta.invoices_analyzed == 3
    assert result.meta.calculation_details.startswith("Calculated using actual invoice")


@pytest.mark.asyncio
async def test_invoice_based_without_invoices_warns():
    calculator = ProfitabilityCalculator(make_gateway([entry(1, 10)]))

    result = await calculator.calculate(
        params(mode=ProfitabilityMode.INVOICE_BASED), rate_table={}
    )

    assert result.totals.billable_amount == 0
    assert "No invoices found for the date range; revenue is $0" in result.warnings


@pytest.mark.asyncio
async def test_time_based_never_fetches_invoices():
    gateway = make_gateway([entry(1, 1)])
    calculator = ProfitabilityCalculator(gateway)

    await calculator.calculate(params(), rate_table={})

    gateway.list_invoices.assert_not_awaited()


@pytest.mark.asyncio
async def test_hybrid_adds_unbilled_time():
    entries = [entry(1, 6, is_billed=True), entry(2, 4, is_billed=False)]
    calculator = ProfitabilityCalculator(make_gateway(entries, [invoice(1, 700)]))

    result = await calculator.calculate(
        params(mode=ProfitabilityMode.HYBRID), rate_table={}
    )

    assert result.totals.billable_amount == 1100
    assert (
        "Hybrid calculation: 6.0h billed (invoice-based), 4.0h unbilled (time-based)"
        in result.warnings
    )


@pytest.mark.asyncio
async def test_group_by_client_attributes_invoices():
    entries = [entry(1, 10, client=1), entry(2, 5, client=2)]
    invoices = [invoice(1, 900, client=1), invoice(2, 2000, client=2)]
    calculator = ProfitabilityCalculator(make_gateway(entries, invoices))

    result = await calculator.calculate(
        params(mode=ProfitabilityMode.INVOICE_BASED, group_by=[GroupBy.CLIENT]),
        rate_table={},
    )

    by_client = {node.id: node.metrics for node in result.grouped_results}
    assert by_client[1].billable_amount == 900
    assert by_client[2].billable_amount == 2000
    # Sorted by billable amount
    assert result.grouped_results[0].id == 2
    assert not any("client groupings" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_non_client_grouping_excludes_invoices():
    entries = [entry(1, 10, project=10), entry(2, 5, project=11)]
    calculator = ProfitabilityCalculator(make_gateway(entries, [invoice(1, 900)]))

    result = await calculator.calculate(
        params(mode=ProfitabilityMode.INVOICE_BASED, group_by=[GroupBy.CLIENT, GroupBy.PROJECT]),
        rate_table={},
    )

    client_node = result.grouped_results[0]
    assert client_node.metrics.billable_amount == 900
    assert all(child.metrics.billable_amount == 0 for child in client_node.children)
    assert (
        "Invoice amounts can only be attributed to client groupings; "
        "other groups exclude invoice revenue"
    ) in result.warnings


@pytest.mark.asyncio
async def test_grouped_hours_add_up():
    entries = [entry(i, h, user=u) for i, (h, u) in enumerate([(1.5, 1), (2.25, 2), (3, 1)], 1)]
    calculator = ProfitabilityCalculator(make_gateway(entries))

    result = await calculator.calculate(params(group_by=[GroupBy.USER]), rate_table={})

    assert sum(n.metrics.hours for n in result.grouped_results) == result.totals.hours
    assert sum(n.metrics.cost for n in result.grouped_results) == result.totals.cost


@pytest.mark.asyncio
async def test_empty_range():
    calculator = ProfitabilityCalculator(make_gateway([]))

    result = await calculator.calculate(params())

    assert result.totals.hours == 0
    assert result.totals.margin_percent == 0
    assert result.grouped_results is None
