from harvest_insights.analytics.aggregation import TimeAggregationCalculator
from harvest_insights.analytics.budget_performance import BudgetPerformanceCalculator
from harvest_insights.analytics.grouping import build_group_tree, partition, round2
from harvest_insights.analytics.profitability import ProfitabilityCalculator
from harvest_insights.analytics.utilization import UtilizationCalculator

__all__ = [
    "BudgetPerformanceCalculator",
    "ProfitabilityCalculator",
    "TimeAggregationCalculator",
    "UtilizationCalculator",
    "build_group_tree",
    "partition",
    "round2",
]
