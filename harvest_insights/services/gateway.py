"""Harvest API v2 gateway.

Every upstream call goes through ApiGateway.request, which:
- answers GETs from the shared ResponseCache when a fresh entry exists
- waits for a permit from the shared RateLimiter before each attempt
- retries 429 responses (after the embargo) and transport errors
- stores successful GETs and invalidates the resource after writes

List endpoints are walked page by page with auto_paginate.
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from harvest_insights.models.config import AppConfig, HarvestSettings, RetryConfig
from harvest_insights.models.harvest import ApiMeta, PaginatedResult
from harvest_insights.observability.context import get_api_call_count, record_api_call
from harvest_insights.observability.metrics import (
    PAGES_FETCHED,
    UPSTREAM_DURATION,
    UPSTREAM_REQUESTS,
)
from harvest_insights.services.cache_service import ResponseCache
from harvest_insights.utils.exceptions import RateLimitError, UpstreamError
from harvest_insights.utils.hash import clean_params, generate_cache_key
from harvest_insights.utils.rate_limiter import RateLimiter, RateLimitStatus

logger = structlog.get_logger()

RETRYABLE_ERRORS = (RateLimitError, aiohttp.ClientError, asyncio.TimeoutError)

PageFetcher = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
ItemExtractor = Callable[[Dict[str, Any]], List[Any]]


@dataclass
class SharedResources:
    """Limiter and cache shared by every gateway in the process.

    Harvest enforces its rate limit per account, so all gateways must draw
    from the same window.
    """

    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    cache: Optional[ResponseCache] = field(default_factory=ResponseCache)

    @classmethod
    def from_config(cls, config: AppConfig) -> "SharedResources":
        cache = ResponseCache(config.cache) if config.cache.enabled else None
        return cls(rate_limiter=RateLimiter(config.rate_limit), cache=cache)


@dataclass
class ApiResponse:
    data: Any
    cached: bool = False
    cache_age: Optional[int] = None


def parse_retry_after(value: Optional[str], default: float) -> float:
    """Seconds from a Retry-After header, `default` when missing or invalid"""
    if value is None:
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    return seconds if seconds >= 0 else default


def _encode_params(params: Dict[str, Any]) -> Dict[str, str]:
    encoded = {}
    for key, value in params.items():
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


class ApiGateway:
    """Single chokepoint for Harvest API calls.

    Use as an async context manager to reuse one HTTP session for many
    calls; otherwise each request opens its own session.
    """

    def __init__(
        self,
        settings: HarvestSettings,
        shared: Optional[SharedResources] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.settings = settings
        self.shared = shared or SharedResources()
        self.retry_config = retry_config or RetryConfig()
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout_seconds)
        self._backoff = wait_exponential(
            multiplier=self.retry_config.base_delay_seconds,
            max=self.retry_config.max_delay_seconds,
        )
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(
        cls, config: AppConfig, shared: Optional[SharedResources] = None
    ) -> "ApiGateway":
        return cls(
            config.harvest,
            shared=shared or SharedResources.from_config(config),
            retry_config=config.retry,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        return self.shared.rate_limiter

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self.shared.cache

    async def __aenter__(self) -> "ApiGateway":
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    # ==================== Core request ====================

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        *,
        skip_cache: bool = False,
        max_retries: Optional[int] = None,
    ) -> ApiResponse:
        """Perform one logical upstream request.

        Args:
            method: HTTP method
            path: Path below the API base URL, starting with "/"
            body: JSON body for POST/PATCH
            params: Query parameters (None values are dropped)
            skip_cache: Bypass the cache for reads and writes of this GET
            max_retries: Total attempts (defaults to retry.max_attempts)

        Returns:
            ApiResponse with the decoded payload (None for 204)

        Raises:
            UpstreamError: Non-2xx response, or retries exhausted
        """
        method = method.upper()
        is_get = method == "GET"
        query = clean_params(params)

        cache_key = None
        if is_get and self.cache is not None and not skip_cache:
            cache_key = generate_cache_key(path, query)
            entry = self.cache.get(cache_key)
            if entry is not None:
                age = self.cache.get_age(cache_key)
                logger.debug("api_cache_hit", path=path, age_seconds=age)
                return ApiResponse(data=entry.data, cached=True, cache_age=age)

        attempts = max_retries if max_retries is not None else self.retry_config.max_attempts

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=self._wait,
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    data = await self._send(method, path, body, query)
        except RateLimitError as e:
            raise UpstreamError(
                f"Rate limited after {attempts} attempts", status_code=429
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(
                f"Request to {path} failed after {attempts} attempts: {e!r}"
            ) from e

        if cache_key is not None and self.cache is not None:
            self.cache.set(cache_key, data)

        if not is_get and self.cache is not None:
            resource = path.split("/")[1] if path.startswith("/") else ""
            if resource:
                self.cache.invalidate(re.compile(rf"^/{re.escape(resource)}"))

        return ApiResponse(data=data, cached=False)

    def _wait(self, retry_state: RetryCallState) -> float:
        # The limiter's embargo already holds the next attempt after a 429
        if retry_state.outcome is not None and isinstance(
            retry_state.outcome.exception(), RateLimitError
        ):
            return 0.0
        return self._backoff(retry_state)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "api_request_retry",
            attempt=retry_state.attempt_number,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]],
        query: Dict[str, Any],
    ) -> Any:
        await self.rate_limiter.throttle()
        record_api_call()

        if self._session is not None:
            return await self._send_with(self._session, method, path, body, query)
        async with aiohttp.ClientSession() as session:
            return await self._send_with(session, method, path, body, query)

    async def _send_with(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]],
        query: Dict[str, Any],
    ) -> Any:
        url = f"{self.settings.base_url}{path}"
        started = time.perf_counter()
        try:
            async with session.request(
                method,
                url,
                params=_encode_params(query),
                json=body,
                headers=self._headers(),
                timeout=self._timeout,
            ) as response:
                status = response.status
                UPSTREAM_REQUESTS.labels(method=method, status=str(status)).inc()

                if status == 429:
                    retry_after = parse_retry_after(
                        response.headers.get("Retry-After"),
                        self.retry_config.default_retry_after_seconds,
                    )
                    self.rate_limiter.handle_rate_limit(retry_after)
                    raise RateLimitError(
                        f"Rate limited, retry after {retry_after}s",
                        retry_after=retry_after,
                    )

                if status < 200 or status >= 300:
                    text = await response.text()
                    logger.error("api_error", method=method, path=path, status=status)
                    raise UpstreamError(
                        f"Harvest API error: {status} {response.reason}",
                        status_code=status,
                        body=text,
                    )

                if status == 204:
                    return None
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            UPSTREAM_REQUESTS.labels(method=method, status="error").inc()
            logger.warning("api_transport_error", method=method, path=path, error=repr(e))
            raise
        finally:
            UPSTREAM_DURATION.labels(method=method).observe(
                time.perf_counter() - started
            )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.access_token}",
            "Harvest-Account-Id": self.settings.account_id,
            "User-Agent": self.settings.user_agent,
            "Accept": "application/json",
        }

    # ==================== Pagination ====================

    async def auto_paginate(
        self,
        fetch_page: PageFetcher,
        extract_items: ItemExtractor,
        base_params: Optional[Dict[str, Any]] = None,
        *,
        max_pages: int = 10,
        per_page: int = 100,
        on_page: Optional[Callable[[int, int], None]] = None,
    ) -> PaginatedResult:
        """Collect every item of a list endpoint, one page at a time.

        Stops when the response has no next page, or when `max_pages` or the
        reported `total_pages` is reached. A failing page propagates and
        nothing accumulated so far is returned.

        Args:
            fetch_page: Endpoint taking the merged params dict
            extract_items: Picks the item array out of a page response
            base_params: Filters sent with every page
            max_pages: Page cap
            per_page: Page size
            on_page: Progress callback (page, total_pages)
        """
        items: List[Any] = []
        page = 1
        total_pages = 1
        total_entries = 0
        pages_fetched = 0

        while page <= max_pages and page <= total_pages:
            response = await fetch_page(
                {**(base_params or {}), "page": page, "per_page": per_page}
            )
            pages_fetched += 1
            PAGES_FETCHED.inc()

            items.extend(extract_items(response))
            total_entries = response.get("total_entries", len(items))
            next_page = response.get("next_page")
            total_pages = response.get("total_pages") or (
                page + 1 if next_page is not None else page
            )

            if on_page is not None:
                on_page(page, total_pages)

            if next_page is None:
                break
            page += 1

        logger.debug(
            "pagination_complete",
            items=len(items),
            total_entries=total_entries,
            pages_fetched=pages_fetched,
        )
        return PaginatedResult(
            items=items, total_entries=total_entries, pages_fetched=pages_fetched
        )

    # ==================== Metadata ====================

    def build_meta(self, cached: bool = False, cache_age: Optional[int] = None) -> ApiMeta:
        return ApiMeta(
            api_calls_made=get_api_call_count(),
            cached=cached,
            cache_age_seconds=cache_age,
            rate_limit_remaining=self.rate_limiter.get_status().remaining,
        )

    def get_rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.get_status()

    def get_cache_stats(self):
        return self.cache.get_stats() if self.cache is not None else None

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        result = await self.request("GET", path, params=params)
        return self._with_meta(result)

    async def _post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._with_meta(await self.request("POST", path, body=body))

    async def _patch(self, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._with_meta(await self.request("PATCH", path, body=body))

    async def _delete(self, path: str) -> None:
        await self.request("DELETE", path)

    def _with_meta(self, result: ApiResponse) -> Dict[str, Any]:
        # Copy so cached payloads are never mutated
        payload = dict(result.data or {})
        payload["_meta"] = self.build_meta(result.cached, result.cache_age).model_dump(
            exclude_none=True
        )
        return payload

    # ==================== Company & users ====================

    async def get_company(self) -> Dict[str, Any]:
        return await self._get("/company")

    async def get_current_user(self) -> Dict[str, Any]:
        return await self._get("/users/me")

    async def list_users(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/users", params)

    async def get_user(self, user_id: int) -> Dict[str, Any]:
        return await self._get(f"/users/{user_id}")

    # ==================== Clients ====================

    async def list_clients(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/clients", params)

    async def get_client(self, client_id: int) -> Dict[str, Any]:
        return await self._get(f"/clients/{client_id}")

    async def create_client(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/clients", data)

    async def update_client(self, client_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._patch(f"/clients/{client_id}", data)

    async def delete_client(self, client_id: int) -> None:
        await self._delete(f"/clients/{client_id}")

    # ==================== Projects & tasks ====================

    async def list_projects(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/projects", params)

    async def get_project(self, project_id: int) -> Dict[str, Any]:
        return await self._get(f"/projects/{project_id}")

    async def list_tasks(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/tasks", params)

    async def get_task(self, task_id: int) -> Dict[str, Any]:
        return await self._get(f"/tasks/{task_id}")

    # ==================== Time entries ====================

    async def list_time_entries(
        self, params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return await self._get("/time_entries", params)

    async def get_time_entry(self, entry_id: int) -> Dict[str, Any]:
        return await self._get(f"/time_entries/{entry_id}")

    async def create_time_entry(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/time_entries", data)

    async def update_time_entry(self, entry_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._patch(f"/time_entries/{entry_id}", data)

    async def delete_time_entry(self, entry_id: int) -> None:
        await self._delete(f"/time_entries/{entry_id}")

    async def restart_time_entry(self, entry_id: int) -> Dict[str, Any]:
        return await self._patch(f"/time_entries/{entry_id}/restart")

    async def stop_time_entry(self, entry_id: int) -> Dict[str, Any]:
        return await self._patch(f"/time_entries/{entry_id}/stop")

    # ==================== Invoices & expenses ====================

    async def list_invoices(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/invoices", params)

    async def get_invoice(self, invoice_id: int) -> Dict[str, Any]:
        return await self._get(f"/invoices/{invoice_id}")

    async def list_expenses(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._get("/expenses", params)

    async def get_expense(self, expense_id: int) -> Dict[str, Any]:
        return await self._get(f"/expenses/{expense_id}")
