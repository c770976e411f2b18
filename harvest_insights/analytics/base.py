from abc import ABC
from typing import Any, Dict, List, Optional

import structlog

from harvest_insights.models.analytics import DateRange
from harvest_insights.models.harvest import TimeEntry, items_of
from harvest_insights.services.gateway import ApiGateway

logger = structlog.get_logger()


class BaseCalculator(ABC):
    """Shared fetching for calculators that work on time entries"""

    # Page cap for time entry fetches
    max_pages: int = 10

    def __init__(self, gateway: ApiGateway, max_pages: Optional[int] = None):
        self.gateway = gateway
        if max_pages is not None:
            self.max_pages = max_pages

    async def fetch_time_entries(
        self, date_range: DateRange, **filters: Any
    ) -> List[TimeEntry]:
        """All time entries in the range matching the given filters"""
        params: Dict[str, Any] = {**date_range.as_params(), **filters}
        result = await self.gateway.auto_paginate(
            self.gateway.list_time_entries,
            items_of("time_entries"),
            params,
            max_pages=self.max_pages,
        )
        if result.total_entries > len(result.items):
            logger.warning(
                "time_entries_truncated",
                fetched=len(result.items),
                total_entries=result.total_entries,
                max_pages=self.max_pages,
            )
        return result.parse(TimeEntry)
