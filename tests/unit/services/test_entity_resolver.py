"""Tests for EntityResolver matching and snapshot caching"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from harvest_insights.models.config import HarvestSettings, ResolverConfig
from harvest_insights.models.entities import EntityResolutionParams, EntityType, MatchType
from harvest_insights.observability.context import record_api_call
from harvest_insights.services.entity_resolver import EntityResolver
from harvest_insights.services.gateway import ApiGateway, SharedResources


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def page(field, items):
    return {field: items, "total_pages": 1, "total_entries": len(items), "next_page": None}


def make_gateway(clients=(), projects=(), users=(), tasks=()):
    gateway = ApiGateway(
        HarvestSettings(access_token="t", account_id="1"), shared=SharedResources()
    )
    gateway.list_clients = AsyncMock(return_value=page("clients", list(clients)))
    gateway.list_projects = AsyncMock(return_value=page("projects", list(projects)))
    gateway.list_users = AsyncMock(return_value=page("users", list(users)))
    gateway.list_tasks = AsyncMock(return_value=page("tasks", list(tasks)))
    return gateway


@pytest.fixture
def directory_gateway():
    return make_gateway(
        clients=[
            {"id": 1, "name": "Acme Inc."},
            {"id": 2, "name": "Globex"},
        ],
        projects=[
            {"id": 10, "name": "Website Redesign", "client": {"id": 1, "name": "Acme Inc."}},
            {"id": 11, "name": "Mobile App", "client": {"id": 2, "name": "Globex"}},
        ],
        users=[{"id": 100, "first_name": "Jane", "last_name": "Doe"}],
        tasks=[{"id": 200, "name": "Design"}],
    )


@pytest.mark.asyncio
async def test_exact_match():
    resolver = EntityResolver(make_gateway(clients=[{"id": 1, "name": "Acme"}]))

    response = await resolver.resolve(EntityResolutionParams(query="Acme"))

    assert len(response.results) == 1
    match = response.results[0]
    assert match.type == EntityType.CLIENT
    assert match.match_type == MatchType.EXACT
    assert match.confidence == 1.0


@pytest.mark.asyncio
async def test_normalized_match(directory_gateway):
    resolver = EntityResolver(directory_gateway)

    response = await resolver.resolve(
        EntityResolutionParams(query="Acme", types=[EntityType.CLIENT])
    )

    assert response.results[0].id == 1
    assert response.results[0].match_type == MatchType.NORMALIZED
    assert response.results[0].confidence == 0.95


@pytest.mark.asyncio
async def test_project_matches_with_client_prefix(directory_gateway):
    resolver = EntityResolver(directory_gateway)

    response = await resolver.resolve(
        EntityResolutionParams(query="Globex - Mobile App", types=[EntityType.PROJECT])
    )

    best = response.results[0]
    assert best.id == 11
    assert best.match_type == MatchType.EXACT
    assert best.confidence == 1.0
    assert best.parent_id == 2
    assert best.parent_name == "Globex"


@pytest.mark.asyncio
async def test_user_matched_by_full_name(directory_gateway):
    resolver = EntityResolver(directory_gateway)

    response = await resolver.resolve(
        EntityResolutionParams(query="jane doe", types=[EntityType.USER])
    )

    assert response.results[0].id == 100
    assert response.results[0].match_type == MatchType.EXACT


@pytest.mark.asyncio
async def test_min_confidence_filters(directory_gateway):
    resolver = EntityResolver(directory_gateway)

    response = await resolver.resolve(
        EntityResolutionParams(query="zzzz", min_confidence=0.5)
    )

    assert response.results == []
    assert response.total_matches == 0


@pytest.mark.asyncio
async def test_limit_is_per_type_and_total_counts_all():
    tasks = [{"id": i, "name": f"Design {i}"} for i in range(1, 8)]
    resolver = EntityResolver(make_gateway(tasks=tasks))

    response = await resolver.resolve(
        EntityResolutionParams(query="Design", types=[EntityType.TASK], limit=5)
    )

    assert len(response.results) == 5
    assert response.total_matches == 7
    confidences = [r.confidence for r in response.results]
    assert confidences == sorted(confidences, reverse=True)


@pytest.mark.asyncio
async def test_snapshot_reused_until_ttl(directory_gateway):
    clock = FakeClock()
    resolver = EntityResolver(
        directory_gateway, ResolverConfig(snapshot_ttl_seconds=300), clock=clock
    )
    params = EntityResolutionParams(query="Globex")

    first = await resolver.resolve(params)
    clock.now += 299
    second = await resolver.resolve(params)
    clock.now += 2
    third = await resolver.resolve(params)

    assert first.cached is False
    assert second.cached is True
    assert third.cached is False
    assert directory_gateway.list_clients.await_count == 2


@pytest.mark.asyncio
async def test_directory_filters(directory_gateway):
    resolver = EntityResolver(directory_gateway)

    await resolver.refresh()

    assert directory_gateway.list_clients.await_args.args[0] == {"page": 1, "per_page": 100}
    for listing in (
        directory_gateway.list_projects,
        directory_gateway.list_users,
        directory_gateway.list_tasks,
    ):
        assert listing.await_args.args[0]["is_active"] is True


@pytest.mark.asyncio
async def test_clear_cache_and_stats(directory_gateway):
    resolver = EntityResolver(directory_gateway)
    assert resolver.get_cache_stats()["cached"] is False

    await resolver.refresh()
    stats = resolver.get_cache_stats()
    assert stats["cached"] is True
    assert stats["entities"] == {"clients": 2, "projects": 2, "users": 1, "tasks": 1}

    resolver.clear_cache()
    assert resolver.get_cache_stats()["entities"] is None


@pytest.mark.asyncio
async def test_concurrent_cold_resolves_fetch_directory_once(directory_gateway):
    clients_page = page("clients", [{"id": 2, "name": "Globex"}])

    async def slow_clients(params):
        await asyncio.sleep(0)
        return clients_page

    directory_gateway.list_clients = AsyncMock(side_effect=slow_clients)
    resolver = EntityResolver(directory_gateway)
    params = EntityResolutionParams(query="Globex")

    responses = await asyncio.gather(*(resolver.resolve(params) for _ in range(3)))

    assert directory_gateway.list_clients.await_count == 1
    assert directory_gateway.list_tasks.await_count == 1
    assert all(r.results[0].id == 2 for r in responses)


@pytest.mark.asyncio
async def test_resolve_logs_api_call_count(directory_gateway):
    def counted(field):
        async def fetch(params):
            record_api_call()
            return page(field, [])

        return fetch

    for field in ("clients", "projects", "users", "tasks"):
        setattr(directory_gateway, f"list_{field}", AsyncMock(side_effect=counted(field)))
    resolver = EntityResolver(directory_gateway)
    params = EntityResolutionParams(query="anything")

    with patch("harvest_insights.services.entity_resolver.logger") as mock_logger:
        await resolver.resolve(params)
        await resolver.resolve(params)

    first, second = mock_logger.debug.call_args_list
    assert first.kwargs["api_calls"] == 4
    assert second.kwargs["api_calls"] == 0
