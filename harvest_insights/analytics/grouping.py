"""Multi-dimension grouping shared by the calculators.

Records are partitioned by the first dimension, metrics are computed per
group, and the remaining dimensions are applied recursively inside each
group. Sibling nodes are sorted descending by a calculator-chosen metric.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Sequence, Tuple, Union

from pydantic import BaseModel

from harvest_insights.models.analytics import GroupBy, GroupNode
from harvest_insights.models.harvest import TimeEntry


@dataclass(frozen=True)
class GroupKey:
    key: str
    id: Union[int, str]
    name: str


# (dimension, key) pairs from the root down to a node
GroupPath = Tuple[Tuple[GroupBy, GroupKey], ...]

MetricsFn = Callable[[List[TimeEntry], GroupPath], BaseModel]
SortKey = Callable[[BaseModel], float]


def week_start(day: date) -> date:
    """Monday of the ISO week containing day"""
    return day - timedelta(days=day.weekday())


def _week_key(entry: TimeEntry) -> GroupKey:
    monday = week_start(entry.spent_date).isoformat()
    return GroupKey(key=f"week:{monday}", id=monday, name=f"Week of {monday}")


def _month_key(entry: TimeEntry) -> GroupKey:
    month = entry.spent_date.strftime("%Y-%m")
    return GroupKey(key=f"month:{month}", id=month, name=month)


def _date_key(entry: TimeEntry) -> GroupKey:
    day = entry.spent_date.isoformat()
    return GroupKey(key=f"date:{day}", id=day, name=day)


KEY_EXTRACTORS: Dict[GroupBy, Callable[[TimeEntry], GroupKey]] = {
    GroupBy.CLIENT: lambda e: GroupKey(f"client:{e.client.id}", e.client.id, e.client.name),
    GroupBy.PROJECT: lambda e: GroupKey(
        f"project:{e.project.id}", e.project.id, e.project.name
    ),
    GroupBy.USER: lambda e: GroupKey(f"user:{e.user.id}", e.user.id, e.user.name),
    GroupBy.TASK: lambda e: GroupKey(f"task:{e.task.id}", e.task.id, e.task.name),
    GroupBy.DATE: _date_key,
    GroupBy.WEEK: _week_key,
    GroupBy.MONTH: _month_key,
}


def group_key(entry: TimeEntry, dimension: GroupBy) -> GroupKey:
    return KEY_EXTRACTORS[dimension](entry)


def partition(
    records: Sequence[TimeEntry], dimension: GroupBy
) -> List[Tuple[GroupKey, List[TimeEntry]]]:
    """Split records by one dimension, groups in first-seen order"""
    groups: Dict[str, Tuple[GroupKey, List[TimeEntry]]] = {}
    for record in records:
        key = group_key(record, dimension)
        if key.key not in groups:
            groups[key.key] = (key, [])
        groups[key.key][1].append(record)
    return list(groups.values())


def build_group_tree(
    records: Sequence[TimeEntry],
    dimensions: Sequence[GroupBy],
    metrics_fn: MetricsFn,
    sort_key: SortKey,
    path: GroupPath = (),
) -> List[GroupNode]:
    """Build the GroupNode tree for records.

    Each node's children partition exactly the node's own records.

    Args:
        records: Records at this level
        dimensions: Remaining grouping dimensions, outermost first
        metrics_fn: Computes a node's metrics from its records and path
        sort_key: Metric used to order siblings (descending)
        path: Path of the parent node

    Returns:
        Sorted sibling nodes (empty when no dimensions remain)
    """
    if not dimensions:
        return []

    dimension, rest = dimensions[0], dimensions[1:]
    nodes = []
    for key, members in partition(records, dimension):
        node_path = path + ((dimension, key),)
        children = (
            build_group_tree(members, rest, metrics_fn, sort_key, node_path)
            if rest
            else None
        )
        nodes.append(
            GroupNode(
                key=key.key,
                id=key.id,
                name=key.name,
                dimension=dimension,
                metrics=metrics_fn(members, node_path),
                children=children,
            )
        )

    nodes.sort(key=lambda node: sort_key(node.metrics), reverse=True)
    return nodes


def round2(value: float) -> float:
    """Round half up to 2 decimal places"""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def percent(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 when the denominator is not positive"""
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100


def working_days(start: date, end: date, exclude_weekends: bool = True) -> int:
    """Days in the inclusive range, optionally skipping Saturday and Sunday"""
    count = 0
    day = start
    while day <= end:
        if not exclude_weekends or day.weekday() < 5:
            count += 1
        day += timedelta(days=1)
    return count
