"""Tests for BudgetPerformanceCalculator"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from harvest_insights.analytics.budget_performance import (
    BudgetPerformanceCalculator,
    get_rating,
)
from harvest_insights.models.analytics import (
    BudgetPerformanceParams,
    BudgetSortBy,
    DateRange,
    PerformanceRating,
    SortOrder,
)
from harvest_insights.models.config import HarvestSettings
from harvest_insights.services.gateway import ApiGateway, SharedResources

QUARTER = DateRange(from_date=date(2024, 1, 1), to_date=date(2024, 3, 31))


def entry(entry_id, hours, user, project, budget=None, user_name=None):
    return {
        "id": entry_id,
        "spent_date": "2024-02-01",
        "hours": hours,
        "billable": True,
        "user": {"id": user, "name": user_name or f"User {user}"},
        "client": {"id": 1, "name": "Acme"},
        "project": {"id": project, "name": f"Project {project}"},
        "task": {"id": 1, "name": "Development"},
        "user_assignment": {"id": user * 100 + project, "budget": budget},
    }


def make_gateway(entries, projects=()):
    gateway = ApiGateway(
        HarvestSettings(access_token="t", account_id="1"), shared=SharedResources()
    )
    gateway.list_time_entries = AsyncMock(
        return_value={"time_entries": entries, "next_page": None}
    )
    gateway.list_projects = AsyncMock(
        return_value={"projects": list(projects), "next_page": None}
    )
    return gateway


class TestGetRating:
    def test_over(self):
        assert get_rating(20.0, 5) == PerformanceRating.OVER_BUDGET

    def test_on_within_tolerance(self):
        assert get_rating(0.0, 5) == PerformanceRating.ON_BUDGET
        assert get_rating(5.0, 5) == PerformanceRating.ON_BUDGET
        assert get_rating(-5.0, 5) == PerformanceRating.ON_BUDGET

    def test_under(self):
        assert get_rating(-5.1, 5) == PerformanceRating.UNDER_BUDGET

    def test_no_budget_is_on_budget(self):
        assert get_rating(None, 5) == PerformanceRating.ON_BUDGET


@pytest.mark.asyncio
async def test_over_and_on_budget_projects():
    entries = [
        entry(1, 8, user=1, project=10, budget=10),
        entry(2, 4, user=1, project=10, budget=10),
        entry(3, 10, user=1, project=11, budget=10),
    ]
    calculator = BudgetPerformanceCalculator(make_gateway(entries))

    result = await calculator.calculate(BudgetPerformanceParams(date_range=QUARTER))

    user = result.users[0]
    projects = {p.project_id: p for p in user.projects}
    assert projects[10].actual_hours == 12
    assert projects[10].variance_hours == 2
    assert projects[10].variance_percent == 20.0
    assert projects[10].rating == PerformanceRating.OVER_BUDGET
    assert projects[10].entry_count == 2
    assert projects[11].rating == PerformanceRating.ON_BUDGET
    assert projects[11].variance_percent == 0.0
    # Worst variance first
    assert user.projects[0].project_id == 10

    assert user.metrics.total_budget_hours == 20
    assert user.metrics.total_actual_hours == 22
    assert user.metrics.total_variance_percent == 10.0
    assert user.metrics.overall_rating == PerformanceRating.OVER_BUDGET
    assert result.meta.projects_analyzed == 2


@pytest.mark.asyncio
async def test_project_without_budget():
    calculator = BudgetPerformanceCalculator(
        make_gateway([entry(1, 5, user=1, project=10, budget=None)])
    )

    result = await calculator.calculate(BudgetPerformanceParams(date_range=QUARTER))

    project = result.users[0].projects[0]
    assert project.budget_hours is None
    assert project.variance_percent is None
    assert project.rating == PerformanceRating.ON_BUDGET
    assert result.users[0].metrics.projects_without_budget == 1
    assert result.warnings == ["1 user(s) have no budget allocations on their projects"]


@pytest.mark.asyncio
async def test_top_performers_and_repeat_offenders():
    entries = [
        # User 1: under budget on one project
        entry(1, 5, user=1, project=10, budget=10),
        # User 2: slightly under budget
        entry(2, 9, user=2, project=10, budget=10),
        # User 3: over on two projects
        entry(3, 15, user=3, project=10, budget=10),
        entry(4, 12, user=3, project=11, budget=10),
    ]
    calculator = BudgetPerformanceCalculator(make_gateway(entries))

    result = await calculator.calculate(BudgetPerformanceParams(date_range=QUARTER))

    assert [p.user_id for p in result.top_performers] == [1, 2]
    assert result.top_performers[0].variance_percent == -50.0
    assert len(result.over_budget_repeat_offenders) == 1
    offender = result.over_budget_repeat_offenders[0]
    assert offender.user_id == 3
    assert offender.projects_over == 2
    assert offender.total_variance_hours == 7

    totals = result.totals
    assert totals.total_users == 3
    assert totals.users_over_budget == 1
    assert totals.users_under_budget == 2
    assert totals.total_budget_hours == 40
    assert totals.total_actual_hours == 41


@pytest.mark.asyncio
async def test_tolerance_changes_rating():
    entries = [entry(1, 10.8, user=1, project=10, budget=10)]
    calculator = BudgetPerformanceCalculator(make_gateway(entries))

    strict = await calculator.calculate(
        BudgetPerformanceParams(date_range=QUARTER, on_budget_tolerance_percent=5)
    )
    loose = await calculator.calculate(
        BudgetPerformanceParams(date_range=QUARTER, on_budget_tolerance_percent=10)
    )

    assert strict.users[0].projects[0].rating == PerformanceRating.OVER_BUDGET
    assert loose.users[0].projects[0].rating == PerformanceRating.ON_BUDGET


@pytest.mark.asyncio
async def test_sorting():
    entries = [
        entry(1, 5, user=1, project=10, budget=10, user_name="Carol"),
        entry(2, 15, user=2, project=10, budget=10, user_name="alice"),
        entry(3, 10, user=3, project=10, budget=10, user_name="Bob"),
    ]
    calculator = BudgetPerformanceCalculator(make_gateway(entries))

    by_variance = await calculator.calculate(BudgetPerformanceParams(date_range=QUARTER))
    by_name = await calculator.calculate(
        BudgetPerformanceParams(date_range=QUARTER, sort_by=BudgetSortBy.USER_NAME)
    )
    by_hours_desc = await calculator.calculate(
        BudgetPerformanceParams(
            date_range=QUARTER,
            sort_by=BudgetSortBy.ACTUAL_HOURS,
            sort_order=SortOrder.DESC,
        )
    )

    assert [u.user_id for u in by_variance.users] == [2, 3, 1]
    assert [u.user_name for u in by_name.users] == ["alice", "Bob", "Carol"]
    assert [u.user_id for u in by_hours_desc.users] == [2, 3, 1]


@pytest.mark.asyncio
async def test_require_person_budget_filters_projects():
    entries = [
        entry(1, 12, user=1, project=10, budget=10),
        entry(2, 3, user=1, project=11, budget=10),
    ]
    projects = [
        {"id": 10, "name": "Project 10", "budget_by": "person", "client": {"id": 1, "name": "Acme"}},
        {"id": 11, "name": "Project 11", "budget_by": "project", "client": {"id": 1, "name": "Acme"}},
    ]
    gateway = make_gateway(entries, projects)
    calculator = BudgetPerformanceCalculator(gateway)

    result = await calculator.calculate(
        BudgetPerformanceParams(date_range=QUARTER, require_person_budget=True)
    )

    assert [p.project_id for p in result.users[0].projects] == [10]
    gateway.list_projects.assert_awaited_once()


@pytest.mark.asyncio
async def test_projects_not_fetched_by_default():
    gateway = make_gateway([entry(1, 1, user=1, project=10, budget=10)])

    await BudgetPerformanceCalculator(gateway).calculate(
        BudgetPerformanceParams(date_range=QUARTER)
    )

    gateway.list_projects.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_entries():
    result = await BudgetPerformanceCalculator(make_gateway([])).calculate(
        BudgetPerformanceParams(date_range=QUARTER)
    )

    assert result.users == []
    assert result.totals.total_users == 0
    assert result.warnings == ["No time entries found for the specified date range"]
    assert result.meta.calculation_details == "No data to analyze"


@pytest.mark.asyncio
async def test_no_person_budget_projects():
    entries = [entry(1, 3, user=1, project=11, budget=10)]
    projects = [
        {"id": 11, "name": "Project 11", "budget_by": "project", "client": {"id": 1, "name": "Acme"}}
    ]

    result = await BudgetPerformanceCalculator(make_gateway(entries, projects)).calculate(
        BudgetPerformanceParams(date_range=QUARTER, require_person_budget=True)
    )

    assert result.users == []
    assert result.meta.entries_analyzed == 1
    assert result.warnings == ["No matching time entries found with the specified filters"]
