"""Per-operation context: correlation IDs and upstream API call counting.

Both values live in ContextVars, so concurrent logical operations (two
calculator runs on the same event loop, say) each see their own values.

Usage:
    from harvest_insights.observability.context import (
        api_call_scope,
        correlation_id_context,
    )

    with correlation_id_context("cli-profitability"), api_call_scope() as calls:
        result = await calculator.calculate(params)
        print(calls.count)
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Generator, Optional

_correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


@dataclass
class ApiCallCounter:
    """Mutable counter shared by every gateway call inside one scope"""

    count: int = 0


_api_calls_var: ContextVar[Optional[ApiCallCounter]] = ContextVar(
    "api_calls", default=None
)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        corr_id: Explicit ID. A UUID4 is generated when omitted.

    Returns:
        The correlation ID that was set.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    _correlation_id_var.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


@contextmanager
def correlation_id_context(
    corr_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Scope a correlation ID, restoring the previous one on exit."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = _correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id_var.reset(token)


@contextmanager
def api_call_scope() -> Generator[ApiCallCounter, None, None]:
    """Count upstream API calls made by one logical operation.

    Scopes nest: an inner scope counts independently and the outer scope
    does not see the inner calls. Calculators and the resolver open one
    scope per public call; calculators report the count as `api_calls_made`
    and the resolver logs it as `api_calls`.

    Yields:
        The counter for this scope.
    """
    counter = ApiCallCounter()
    token = _api_calls_var.set(counter)
    try:
        yield counter
    finally:
        _api_calls_var.reset(token)


def record_api_call() -> None:
    """Increment the active scope's counter (no-op outside a scope)"""
    counter = _api_calls_var.get()
    if counter is not None:
        counter.count += 1


def get_api_call_count() -> int:
    counter = _api_calls_var.get()
    return counter.count if counter is not None else 0
