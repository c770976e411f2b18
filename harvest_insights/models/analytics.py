"""Parameter and result models for the analytics calculators."""

from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GroupBy(str, Enum):
    CLIENT = "client"
    PROJECT = "project"
    USER = "user"
    TASK = "task"
    DATE = "date"
    WEEK = "week"
    MONTH = "month"


class ProfitabilityMode(str, Enum):
    TIME_BASED = "time_based"
    INVOICE_BASED = "invoice_based"
    HYBRID = "hybrid"


class PerformanceRating(str, Enum):
    OVER_BUDGET = "over_budget"
    UNDER_BUDGET = "under_budget"
    ON_BUDGET = "on_budget"


class BudgetSortBy(str, Enum):
    VARIANCE_HOURS = "variance_hours"
    VARIANCE_PERCENT = "variance_percent"
    ACTUAL_HOURS = "actual_hours"
    USER_NAME = "user_name"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class DateRange(BaseModel):
    """Inclusive date range, serialized as {"from": ..., "to": ...}"""

    model_config = ConfigDict(populate_by_name=True)

    from_date: date = Field(..., alias="from")
    to_date: date = Field(..., alias="to")

    @field_validator("to_date")
    @classmethod
    def validate_date_range(cls, v: date, info) -> date:
        values = info.data
        if "from_date" in values and v < values["from_date"]:
            raise ValueError("to date must not be before from date")
        return v

    def as_params(self) -> Dict[str, str]:
        return {"from": self.from_date.isoformat(), "to": self.to_date.isoformat()}


# ==================== Metrics ====================


class ProfitabilityMetrics(BaseModel):
    hours: float = 0.0
    billable_hours: float = 0.0
    non_billable_hours: float = 0.0
    billable_amount: float = 0.0
    cost: float = 0.0
    profit: float = 0.0
    margin_percent: float = 0.0
    effective_rate: float = 0.0
    cost_rate_avg: float = 0.0


class UtilizationMetrics(BaseModel):
    total_hours: float = 0.0
    billable_hours: float = 0.0
    non_billable_hours: float = 0.0
    capacity_hours: float = 0.0
    utilization_percent: float = 0.0
    billable_utilization_percent: float = 0.0
    billable_ratio_percent: float = 0.0
    working_days: int = 0


class TimeAggregationMetrics(BaseModel):
    hours: float = 0.0
    rounded_hours: float = 0.0
    billable_hours: float = 0.0
    non_billable_hours: float = 0.0
    entry_count: int = 0
    billable_amount: float = 0.0


GroupMetrics = Union[ProfitabilityMetrics, UtilizationMetrics, TimeAggregationMetrics]


class GroupNode(BaseModel):
    """One group in a multi-dimension breakdown.

    Children partition this node's records exactly.
    """

    key: str
    id: Union[int, str]
    name: str
    dimension: GroupBy
    metrics: GroupMetrics
    children: Optional[List["GroupNode"]] = None


GroupNode.model_rebuild()


class AnalyticsMeta(BaseModel):
    entries_analyzed: int = 0
    api_calls_made: int = 0
    invoices_analyzed: Optional[int] = None
    users_included: Optional[int] = None
    projects_analyzed: Optional[int] = None
    calculation_details: Optional[str] = None


class Filters(BaseModel):
    client_id: Optional[int] = None
    project_id: Optional[int] = None
    user_id: Optional[int] = None
    task_id: Optional[int] = None
    billable_only: Optional[bool] = None


# ==================== Profitability ====================


class ProfitabilityParams(BaseModel):
    mode: ProfitabilityMode = ProfitabilityMode.TIME_BASED
    date_range: DateRange
    client_id: Optional[int] = None
    project_id: Optional[int] = None
    user_id: Optional[int] = None
    group_by: List[GroupBy] = Field(default_factory=list)
    include_non_billable: bool = Field(
        False, description="Include non-billable time in cost calculations"
    )


class ProfitabilityResponse(BaseModel):
    mode: ProfitabilityMode
    date_range: DateRange
    filters: Filters
    totals: ProfitabilityMetrics
    grouped_results: Optional[List[GroupNode]] = None
    warnings: List[str] = Field(default_factory=list)
    meta: AnalyticsMeta = Field(serialization_alias="_meta")


# ==================== Utilization ====================


class UtilizationParams(BaseModel):
    date_range: DateRange
    user_id: Optional[int] = None
    project_id: Optional[int] = None
    client_id: Optional[int] = None
    group_by: List[GroupBy] = Field(default_factory=list)
    capacity_hours_per_day: float = Field(8.0, gt=0, le=24)
    exclude_weekends: bool = True


class UtilizationSettings(BaseModel):
    capacity_hours_per_day: float
    exclude_weekends: bool


class UtilizationResponse(BaseModel):
    date_range: DateRange
    filters: Filters
    settings: UtilizationSettings
    totals: UtilizationMetrics
    grouped_results: Optional[List[GroupNode]] = None
    warnings: List[str] = Field(default_factory=list)
    meta: AnalyticsMeta = Field(serialization_alias="_meta")


# ==================== Time aggregation ====================


class TimeAggregationParams(BaseModel):
    date_range: DateRange
    group_by: List[GroupBy] = Field(..., min_length=1)
    client_id: Optional[int] = None
    project_id: Optional[int] = None
    user_id: Optional[int] = None
    task_id: Optional[int] = None
    billable_only: bool = False


class TimeAggregationResponse(BaseModel):
    date_range: DateRange
    filters: Filters
    group_by: List[GroupBy]
    totals: TimeAggregationMetrics
    grouped_results: List[GroupNode] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    meta: AnalyticsMeta = Field(serialization_alias="_meta")


# ==================== Budget performance ====================


class BudgetPerformanceParams(BaseModel):
    date_range: DateRange
    client_id: Optional[int] = None
    project_id: Optional[int] = None
    user_id: Optional[int] = None
    require_person_budget: bool = Field(
        False, description="Only include projects budgeted per person"
    )
    on_budget_tolerance_percent: float = Field(5.0, ge=0.0, le=100.0)
    sort_by: BudgetSortBy = BudgetSortBy.VARIANCE_HOURS
    sort_order: Optional[SortOrder] = None


class ProjectBudgetMetrics(BaseModel):
    project_id: int
    project_name: str
    client_id: int
    client_name: str
    budget_hours: Optional[float] = None
    actual_hours: float
    variance_hours: float
    variance_percent: Optional[float] = None
    rating: PerformanceRating
    entry_count: int


class UserBudgetMetrics(BaseModel):
    total_budget_hours: float
    total_actual_hours: float
    total_variance_hours: float
    total_variance_percent: Optional[float] = None
    projects_over_budget: int
    projects_under_budget: int
    projects_on_budget: int
    projects_without_budget: int
    overall_rating: PerformanceRating


class UserBudgetResult(BaseModel):
    user_id: int
    user_name: str
    metrics: UserBudgetMetrics
    projects: List[ProjectBudgetMetrics]


class BudgetTotals(BaseModel):
    total_users: int = 0
    users_over_budget: int = 0
    users_under_budget: int = 0
    users_on_budget: int = 0
    total_budget_hours: float = 0.0
    total_actual_hours: float = 0.0
    total_variance_hours: float = 0.0
    total_variance_percent: Optional[float] = None


class TopPerformer(BaseModel):
    user_id: int
    user_name: str
    variance_percent: float


class RepeatOffender(BaseModel):
    user_id: int
    user_name: str
    projects_over: int
    total_variance_hours: float


class BudgetSettings(BaseModel):
    on_budget_tolerance_percent: float
    require_person_budget: bool


class BudgetPerformanceResponse(BaseModel):
    date_range: DateRange
    filters: Filters
    settings: BudgetSettings
    totals: BudgetTotals = Field(default_factory=BudgetTotals)
    users: List[UserBudgetResult] = Field(default_factory=list)
    top_performers: List[TopPerformer] = Field(default_factory=list)
    over_budget_repeat_offenders: List[RepeatOffender] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    meta: AnalyticsMeta = Field(serialization_alias="_meta")
