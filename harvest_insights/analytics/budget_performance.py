"""
Budget performance calculator.

Compares the hours each user logged on each project with the user's budget
on that project (the time entry's user_assignment). Identifies users who
come in under budget and users who run over budget on several projects.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

import structlog

from harvest_insights.analytics.base import BaseCalculator
from harvest_insights.analytics.grouping import round2
from harvest_insights.models.analytics import (
    AnalyticsMeta,
    BudgetPerformanceParams,
    BudgetPerformanceResponse,
    BudgetSettings,
    BudgetSortBy,
    BudgetTotals,
    Filters,
    PerformanceRating,
    ProjectBudgetMetrics,
    RepeatOffender,
    SortOrder,
    TopPerformer,
    UserBudgetMetrics,
    UserBudgetResult,
)
from harvest_insights.models.harvest import Project, TimeEntry, items_of
from harvest_insights.observability.context import api_call_scope
from harvest_insights.observability.metrics import CALCULATIONS

logger = structlog.get_logger()

TOP_PERFORMERS_LIMIT = 5
REPEAT_OFFENDERS_LIMIT = 5
REPEAT_OFFENDER_MIN_PROJECTS = 2


@dataclass
class _UserProject:
    user_id: int
    user_name: str
    project_id: int
    project_name: str
    client_id: int
    client_name: str
    budget_hours: Optional[float]
    actual_hours: float = 0.0
    entry_count: int = 0


def get_rating(variance_percent: Optional[float], tolerance: float) -> PerformanceRating:
    """Rate a variance; no budget counts as on budget"""
    if variance_percent is None:
        return PerformanceRating.ON_BUDGET
    if variance_percent > tolerance:
        return PerformanceRating.OVER_BUDGET
    if variance_percent < -tolerance:
        return PerformanceRating.UNDER_BUDGET
    return PerformanceRating.ON_BUDGET


def _variance_percent(variance: float, budget: Optional[float]) -> Optional[float]:
    if budget is None or budget <= 0:
        return None
    return variance / budget * 100


_SORT_KEYS = {
    BudgetSortBy.VARIANCE_HOURS: lambda u: u.metrics.total_variance_hours,
    BudgetSortBy.VARIANCE_PERCENT: lambda u: u.metrics.total_variance_percent or 0.0,
    BudgetSortBy.ACTUAL_HOURS: lambda u: u.metrics.total_actual_hours,
    BudgetSortBy.USER_NAME: lambda u: u.user_name.lower(),
}


def sort_users(
    users: List[UserBudgetResult],
    sort_by: BudgetSortBy,
    sort_order: Optional[SortOrder] = None,
) -> None:
    """Sort in place; variance sorts default to worst first, others ascending"""
    if sort_order is None:
        descending = sort_by in (BudgetSortBy.VARIANCE_HOURS, BudgetSortBy.VARIANCE_PERCENT)
    else:
        descending = sort_order == SortOrder.DESC
    users.sort(key=_SORT_KEYS[sort_by], reverse=descending)


class BudgetPerformanceCalculator(BaseCalculator):
    max_pages = 20

    async def calculate(self, params: BudgetPerformanceParams) -> BudgetPerformanceResponse:
        tolerance = params.on_budget_tolerance_percent

        with api_call_scope() as calls:
            entries = await self.fetch_time_entries(
                params.date_range,
                client_id=params.client_id,
                project_id=params.project_id,
                user_id=params.user_id,
            )
            projects: Dict[int, Project] = {}
            if entries and params.require_person_budget:
                projects = await self._fetch_projects(params.client_id)

        if not entries:
            return self._empty(
                params, ["No time entries found for the specified date range"], calls.count
            )

        pairs = self._collect(entries, projects, params.require_person_budget)
        if not pairs:
            return self._empty(
                params,
                ["No matching time entries found with the specified filters"],
                calls.count,
                entries_analyzed=len(entries),
            )

        by_user: Dict[int, List[_UserProject]] = {}
        for pair in pairs:
            by_user.setdefault(pair.user_id, []).append(pair)

        users = [
            self._user_result(user_pairs, tolerance) for user_pairs in by_user.values()
        ]
        sort_users(users, params.sort_by, params.sort_order)

        warnings = []
        without_budgets = [
            u for u in users if u.metrics.projects_without_budget == len(u.projects)
        ]
        if without_budgets:
            warnings.append(
                f"{len(without_budgets)} user(s) have no budget allocations on their projects"
            )

        CALCULATIONS.labels(calculator="budget_performance").inc()
        logger.info(
            "budget_performance_calculated",
            entries=len(entries),
            users=len(users),
            pairs=len(pairs),
        )

        return BudgetPerformanceResponse(
            date_range=params.date_range,
            filters=self._filters(params),
            settings=self._settings(params),
            totals=self._totals(users),
            users=users,
            top_performers=self._top_performers(users),
            over_budget_repeat_offenders=self._repeat_offenders(users),
            warnings=warnings,
            meta=AnalyticsMeta(
                entries_analyzed=len(entries),
                projects_analyzed=len({p.project_id for p in pairs}),
                calculation_details=(
                    "Compares actual hours logged vs user budget allocations per project"
                ),
                api_calls_made=calls.count,
            ),
        )

    async def _fetch_projects(self, client_id: Optional[int]) -> Dict[int, Project]:
        result = await self.gateway.auto_paginate(
            self.gateway.list_projects,
            items_of("projects"),
            {"client_id": client_id, "is_active": True},
            max_pages=self.max_pages,
        )
        return {project.id: project for project in result.parse(Project)}

    def _collect(
        self,
        entries: List[TimeEntry],
        projects: Dict[int, Project],
        require_person_budget: bool,
    ) -> List[_UserProject]:
        pairs: Dict[tuple, _UserProject] = {}
        for entry in entries:
            if require_person_budget:
                project = projects.get(entry.project.id)
                if project is None or project.budget_by != "person":
                    continue

            key = (entry.user.id, entry.project.id)
            if key not in pairs:
                budget = entry.user_assignment.budget if entry.user_assignment else None
                pairs[key] = _UserProject(
                    user_id=entry.user.id,
                    user_name=entry.user.name,
                    project_id=entry.project.id,
                    project_name=entry.project.name,
                    client_id=entry.client.id,
                    client_name=entry.client.name,
                    budget_hours=budget,
                )
            pairs[key].actual_hours += entry.hours
            pairs[key].entry_count += 1
        return list(pairs.values())

    def _user_result(
        self, user_pairs: List[_UserProject], tolerance: float
    ) -> UserBudgetResult:
        project_metrics = []
        total_budget = total_actual = 0.0
        over = under = on = without = 0

        for pair in user_pairs:
            variance = (
                pair.actual_hours - pair.budget_hours
                if pair.budget_hours is not None
                else 0.0
            )
            variance_pct = _variance_percent(variance, pair.budget_hours)
            rating = get_rating(variance_pct, tolerance)

            if pair.budget_hours is None:
                without += 1
            else:
                total_budget += pair.budget_hours
                if rating == PerformanceRating.OVER_BUDGET:
                    over += 1
                elif rating == PerformanceRating.UNDER_BUDGET:
                    under += 1
                else:
                    on += 1
            total_actual += pair.actual_hours

            project_metrics.append(
                ProjectBudgetMetrics(
                    project_id=pair.project_id,
                    project_name=pair.project_name,
                    client_id=pair.client_id,
                    client_name=pair.client_name,
                    budget_hours=(
                        round2(pair.budget_hours) if pair.budget_hours is not None else None
                    ),
                    actual_hours=round2(pair.actual_hours),
                    variance_hours=round2(variance),
                    variance_percent=(
                        round2(variance_pct) if variance_pct is not None else None
                    ),
                    rating=rating,
                    entry_count=pair.entry_count,
                )
            )

        # Worst variance first
        project_metrics.sort(key=lambda p: p.variance_hours, reverse=True)

        total_variance = total_actual - total_budget
        total_pct = _variance_percent(total_variance, total_budget)

        first = user_pairs[0]
        return UserBudgetResult(
            user_id=first.user_id,
            user_name=first.user_name,
            metrics=UserBudgetMetrics(
                total_budget_hours=round2(total_budget),
                total_actual_hours=round2(total_actual),
                total_variance_hours=round2(total_variance),
                total_variance_percent=round2(total_pct) if total_pct is not None else None,
                projects_over_budget=over,
                projects_under_budget=under,
                projects_on_budget=on,
                projects_without_budget=without,
                overall_rating=get_rating(total_pct, tolerance),
            ),
            projects=project_metrics,
        )

    def _totals(self, users: List[UserBudgetResult]) -> BudgetTotals:
        total_budget = sum(u.metrics.total_budget_hours for u in users)
        total_actual = sum(u.metrics.total_actual_hours for u in users)
        ratings = [u.metrics.overall_rating for u in users]
        total_variance = total_actual - total_budget
        total_pct = _variance_percent(total_variance, total_budget)

        return BudgetTotals(
            total_users=len(users),
            users_over_budget=ratings.count(PerformanceRating.OVER_BUDGET),
            users_under_budget=ratings.count(PerformanceRating.UNDER_BUDGET),
            users_on_budget=ratings.count(PerformanceRating.ON_BUDGET),
            total_budget_hours=round2(total_budget),
            total_actual_hours=round2(total_actual),
            total_variance_hours=round2(total_variance),
            total_variance_percent=round2(total_pct) if total_pct is not None else None,
        )

    def _top_performers(self, users: List[UserBudgetResult]) -> List[TopPerformer]:
        candidates = [
            u
            for u in users
            if u.metrics.overall_rating == PerformanceRating.UNDER_BUDGET
            and u.metrics.total_variance_percent is not None
        ]
        candidates.sort(key=lambda u: u.metrics.total_variance_percent)
        return [
            TopPerformer(
                user_id=u.user_id,
                user_name=u.user_name,
                variance_percent=u.metrics.total_variance_percent,
            )
            for u in candidates[:TOP_PERFORMERS_LIMIT]
        ]

    def _repeat_offenders(self, users: List[UserBudgetResult]) -> List[RepeatOffender]:
        offenders = [
            u
            for u in users
            if u.metrics.projects_over_budget >= REPEAT_OFFENDER_MIN_PROJECTS
        ]
        offenders.sort(key=lambda u: u.metrics.projects_over_budget, reverse=True)
        return [
            RepeatOffender(
                user_id=u.user_id,
                user_name=u.user_name,
                projects_over=u.metrics.projects_over_budget,
                total_variance_hours=u.metrics.total_variance_hours,
            )
            for u in offenders[:REPEAT_OFFENDERS_LIMIT]
        ]

    def _filters(self, params: BudgetPerformanceParams) -> Filters:
        return Filters(
            client_id=params.client_id,
            project_id=params.project_id,
            user_id=params.user_id,
        )

    def _settings(self, params: BudgetPerformanceParams) -> BudgetSettings:
        return BudgetSettings(
            on_budget_tolerance_percent=params.on_budget_tolerance_percent,
            require_person_budget=params.require_person_budget,
        )

    def _empty(
        self,
        params: BudgetPerformanceParams,
        warnings: List[str],
        api_calls: int,
        entries_analyzed: int = 0,
    ) -> BudgetPerformanceResponse:
        return BudgetPerformanceResponse(
            date_range=params.date_range,
            filters=self._filters(params),
            settings=self._settings(params),
            warnings=warnings,
            meta=AnalyticsMeta(
                entries_analyzed=entries_analyzed,
                projects_analyzed=0,
                calculation_details="No data to analyze",
                api_calls_made=api_calls,
            ),
        )
