"""Analytics commands: profitability, utilization, aggregate and budget."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from harvest_insights.analytics import (
    BudgetPerformanceCalculator,
    ProfitabilityCalculator,
    TimeAggregationCalculator,
    UtilizationCalculator,
)
from harvest_insights.cli.utils import (
    CONFIG_OPTION,
    DATE_FORMATS,
    display_warnings,
    handle_errors,
    load_config,
    print_result,
    run_with_gateway,
    to_date_range,
)
from harvest_insights.models.analytics import (
    BudgetPerformanceParams,
    BudgetSortBy,
    GroupBy,
    ProfitabilityMode,
    ProfitabilityParams,
    SortOrder,
    TimeAggregationParams,
    UtilizationParams,
)
from harvest_insights.services.rates_service import RatesService

FROM_OPTION = typer.Option(..., "--from", formats=DATE_FORMATS, help="Start date (inclusive)")
TO_OPTION = typer.Option(..., "--to", formats=DATE_FORMATS, help="End date (inclusive)")
GROUP_BY_OPTION = typer.Option(
    None, "--group-by", "-g", help="Grouping dimension, repeat for nesting"
)


@handle_errors
def profitability_command(
    start: datetime = FROM_OPTION,
    end: datetime = TO_OPTION,
    mode: ProfitabilityMode = typer.Option(ProfitabilityMode.TIME_BASED, "--mode"),
    client_id: Optional[int] = typer.Option(None, "--client-id"),
    project_id: Optional[int] = typer.Option(None, "--project-id"),
    user_id: Optional[int] = typer.Option(None, "--user-id"),
    group_by: Optional[List[GroupBy]] = GROUP_BY_OPTION,
    include_non_billable: bool = typer.Option(
        False, "--include-non-billable", help="Count non-billable time as cost"
    ),
    config_path: Path = CONFIG_OPTION,
):
    """Revenue, cost and margin for a date range."""
    config = load_config(config_path)
    params = ProfitabilityParams(
        mode=mode,
        date_range=to_date_range(start, end),
        client_id=client_id,
        project_id=project_id,
        user_id=user_id,
        group_by=group_by or [],
        include_non_billable=include_non_billable,
    )

    async def operation(gateway):
        rates = RatesService(gateway, config.rates)
        return await ProfitabilityCalculator(gateway, rates).calculate(params)

    result = run_with_gateway(config, operation, name="cli-profitability")
    print_result(result)
    display_warnings(result.warnings)


@handle_errors
def utilization_command(
    start: datetime = FROM_OPTION,
    end: datetime = TO_OPTION,
    user_id: Optional[int] = typer.Option(None, "--user-id"),
    project_id: Optional[int] = typer.Option(None, "--project-id"),
    client_id: Optional[int] = typer.Option(None, "--client-id"),
    group_by: Optional[List[GroupBy]] = GROUP_BY_OPTION,
    capacity: float = typer.Option(8.0, "--capacity", help="Capacity hours per day"),
    include_weekends: bool = typer.Option(
        False, "--include-weekends", help="Count Saturdays and Sundays as working days"
    ),
    config_path: Path = CONFIG_OPTION,
):
    """Logged hours against working-day capacity."""
    config = load_config(config_path)
    params = UtilizationParams(
        date_range=to_date_range(start, end),
        user_id=user_id,
        project_id=project_id,
        client_id=client_id,
        group_by=group_by or [],
        capacity_hours_per_day=capacity,
        exclude_weekends=not include_weekends,
    )

    result = run_with_gateway(
        config,
        lambda gateway: UtilizationCalculator(gateway).calculate(params),
        name="cli-utilization",
    )
    print_result(result)
    display_warnings(result.warnings)


@handle_errors
def aggregate_command(
    start: datetime = FROM_OPTION,
    end: datetime = TO_OPTION,
    group_by: List[GroupBy] = typer.Option(
        ..., "--group-by", "-g", help="Grouping dimension, repeat for nesting"
    ),
    client_id: Optional[int] = typer.Option(None, "--client-id"),
    project_id: Optional[int] = typer.Option(None, "--project-id"),
    user_id: Optional[int] = typer.Option(None, "--user-id"),
    task_id: Optional[int] = typer.Option(None, "--task-id"),
    billable_only: bool = typer.Option(False, "--billable-only"),
    config_path: Path = CONFIG_OPTION,
):
    """Sum hours and amounts of time entries per group."""
    config = load_config(config_path)
    params = TimeAggregationParams(
        date_range=to_date_range(start, end),
        group_by=group_by,
        client_id=client_id,
        project_id=project_id,
        user_id=user_id,
        task_id=task_id,
        billable_only=billable_only,
    )

    result = run_with_gateway(
        config,
        lambda gateway: TimeAggregationCalculator(gateway).aggregate(params),
        name="cli-aggregate",
    )
    print_result(result)
    display_warnings(result.warnings)


@handle_errors
def budget_command(
    start: datetime = FROM_OPTION,
    end: datetime = TO_OPTION,
    client_id: Optional[int] = typer.Option(None, "--client-id"),
    project_id: Optional[int] = typer.Option(None, "--project-id"),
    user_id: Optional[int] = typer.Option(None, "--user-id"),
    require_person_budget: bool = typer.Option(
        False, "--require-person-budget", help="Only projects budgeted per person"
    ),
    tolerance: float = typer.Option(
        5.0, "--tolerance", help="On-budget tolerance in percent"
    ),
    sort_by: BudgetSortBy = typer.Option(BudgetSortBy.VARIANCE_HOURS, "--sort-by"),
    sort_order: Optional[SortOrder] = typer.Option(None, "--sort-order"),
    config_path: Path = CONFIG_OPTION,
):
    """Actual hours against per-user project budgets."""
    config = load_config(config_path)
    params = BudgetPerformanceParams(
        date_range=to_date_range(start, end),
        client_id=client_id,
        project_id=project_id,
        user_id=user_id,
        require_person_budget=require_person_budget,
        on_budget_tolerance_percent=tolerance,
        sort_by=sort_by,
        sort_order=sort_order,
    )

    result = run_with_gateway(
        config,
        lambda gateway: BudgetPerformanceCalculator(gateway).calculate(params),
        name="cli-budget",
    )
    print_result(result)
    display_warnings(result.warnings)
