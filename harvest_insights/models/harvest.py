"""Harvest API v2 record models.

Only the fields the gateway, resolver and calculators read are declared;
everything else in the upstream payload is ignored. Records are frozen once
parsed: a calculation owns its records and never mutates them.
"""

from datetime import date
from typing import Any, Callable, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T", bound=BaseModel)


class ApiMeta(BaseModel):
    """Request tracking metadata attached to every response as `_meta`"""

    api_calls_made: int = 0
    cached: bool = False
    cache_age_seconds: Optional[int] = None
    rate_limit_remaining: Optional[int] = None


class PaginatedResult(BaseModel):
    """Items accumulated by ApiGateway.auto_paginate"""

    items: List[Any] = Field(default_factory=list)
    total_entries: int = 0
    pages_fetched: int = 0

    def parse(self, model: type[T]) -> List[T]:
        """Validate raw items into record models"""
        return [model.model_validate(item) for item in self.items]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class NamedRef(_Record):
    id: int
    name: str = ""


class UserAssignment(_Record):
    id: Optional[int] = None
    budget: Optional[float] = None
    hourly_rate: Optional[float] = None


class InvoiceRef(_Record):
    id: int
    number: Optional[str] = None


class TimeEntry(_Record):
    """A normalized time-tracking line"""

    id: int
    spent_date: date
    hours: float = 0.0
    rounded_hours: Optional[float] = None
    billable: bool = False
    is_billed: bool = False
    billable_rate: Optional[float] = None
    cost_rate: Optional[float] = None
    user: NamedRef
    client: NamedRef
    project: NamedRef
    task: NamedRef
    user_assignment: Optional[UserAssignment] = None
    invoice: Optional[InvoiceRef] = None

    @property
    def effective_rounded_hours(self) -> float:
        return self.rounded_hours if self.rounded_hours is not None else self.hours


class Invoice(_Record):
    id: int
    amount: float = 0.0
    state: Literal["draft", "open", "paid", "closed"] = "open"
    client: NamedRef
    issue_date: Optional[date] = None


class User(_Record):
    id: int
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    cost_rate: Optional[float] = None
    default_hourly_rate: Optional[float] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Client(_Record):
    id: int
    name: str
    is_active: bool = True


class ProjectClient(_Record):
    id: int
    name: str = ""


class Project(_Record):
    id: int
    name: str
    is_active: bool = True
    is_billable: bool = True
    hourly_rate: Optional[float] = None
    budget: Optional[float] = None
    budget_by: str = "none"
    client: ProjectClient


class Task(_Record):
    id: int
    name: str
    is_active: bool = True


def items_of(field: str) -> Callable[[dict], list]:
    """Extractor for the array payload of a paginated list response"""

    def extract(response: dict) -> list:
        return response.get(field) or []

    return extract
