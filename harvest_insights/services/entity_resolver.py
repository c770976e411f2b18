"""
Fuzzy resolution of free-text names to Harvest directory records.

A snapshot of clients, active projects, active users and active tasks is
kept in memory and refreshed when older than the configured TTL. Each
candidate name is scored by:

1. case-insensitive equality (1.0, exact)
2. equality after normalization (0.95, normalized)
3. containment either way (0.7 + 0.2 * length ratio, partial)
4. Levenshtein similarity (fuzzy)
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from harvest_insights.models.config import ResolverConfig
from harvest_insights.models.entities import (
    DirectoryEntry,
    DirectorySnapshot,
    EntityResolutionParams,
    EntityResolutionResponse,
    EntityType,
    MatchType,
    ResolvedEntity,
)
from harvest_insights.models.harvest import Client, Project, Task, User, items_of
from harvest_insights.observability.context import api_call_scope
from harvest_insights.observability.metrics import ENTITY_RESOLUTIONS
from harvest_insights.services.gateway import ApiGateway
from harvest_insights.utils.hash import calculate_similarity

logger = structlog.get_logger()


class EntityResolver:
    """Matches queries against a cached directory snapshot"""

    def __init__(
        self,
        gateway: ApiGateway,
        config: Optional[ResolverConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.config = config or ResolverConfig()
        self._clock = clock
        self._snapshot: Optional[DirectorySnapshot] = None
        self._snapshot_taken_at = 0.0
        self._refresh_lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        if self._snapshot is None:
            return False
        return self._clock() - self._snapshot_taken_at < self.config.snapshot_ttl_seconds

    async def _paginate(self, fetch_page, field: str, params: Dict[str, Any]) -> List[Any]:
        result = await self.gateway.auto_paginate(
            fetch_page, items_of(field), params, max_pages=self.config.max_pages
        )
        return result.items

    async def refresh(self) -> DirectorySnapshot:
        """Fetch the directory, one list after another"""
        clients = await self._paginate(self.gateway.list_clients, "clients", {})
        projects = await self._paginate(
            self.gateway.list_projects, "projects", {"is_active": True}
        )
        users = await self._paginate(self.gateway.list_users, "users", {"is_active": True})
        tasks = await self._paginate(self.gateway.list_tasks, "tasks", {"is_active": True})

        snapshot = DirectorySnapshot(
            clients=[
                DirectoryEntry(id=c.id, name=c.name)
                for c in map(Client.model_validate, clients)
            ],
            projects=[
                DirectoryEntry(
                    id=p.id,
                    name=p.name,
                    parent_id=p.client.id,
                    parent_name=p.client.name,
                )
                for p in map(Project.model_validate, projects)
            ],
            users=[
                DirectoryEntry(id=u.id, name=u.full_name)
                for u in map(User.model_validate, users)
            ],
            tasks=[
                DirectoryEntry(id=t.id, name=t.name)
                for t in map(Task.model_validate, tasks)
            ],
        )
        self._snapshot = snapshot
        self._snapshot_taken_at = self._clock()

        logger.info(
            "entity_snapshot_refreshed",
            clients=len(snapshot.clients),
            projects=len(snapshot.projects),
            users=len(snapshot.users),
            tasks=len(snapshot.tasks),
        )
        return snapshot

    async def _fresh_snapshot(self) -> DirectorySnapshot:
        # One refresh at a time; waiters reuse the snapshot it produced.
        async with self._refresh_lock:
            if self._is_fresh():
                return self._snapshot
            return await self.refresh()

    def _score(self, query: str, entity_type: EntityType, entry: DirectoryEntry):
        score, match_type = calculate_similarity(query, entry.name)
        if entity_type == EntityType.PROJECT and entry.parent_name is not None:
            full_score, full_type = calculate_similarity(
                query, f"{entry.parent_name} - {entry.name}"
            )
            if full_score > score:
                score, match_type = full_score, full_type
        return score, MatchType(match_type)

    async def resolve(self, params: EntityResolutionParams) -> EntityResolutionResponse:
        """
        Resolve a query to ranked directory records.

        Results below min_confidence are dropped; the rest are sorted by
        confidence and capped at `limit` per entity type. total_matches
        counts matches before the cap.
        """
        was_fresh = self._is_fresh()
        with api_call_scope() as calls:
            snapshot = self._snapshot if was_fresh else await self._fresh_snapshot()
        ENTITY_RESOLUTIONS.labels(snapshot="fresh" if was_fresh else "refreshed").inc()

        matches: List[ResolvedEntity] = []
        for entity_type in EntityType:
            if entity_type not in params.types:
                continue
            for entry in snapshot.entries_for(entity_type):
                score, match_type = self._score(params.query, entity_type, entry)
                if score < params.min_confidence:
                    continue
                matches.append(
                    ResolvedEntity(
                        type=entity_type,
                        id=entry.id,
                        name=entry.name,
                        confidence=score,
                        match_type=match_type,
                        parent_id=entry.parent_id,
                        parent_name=entry.parent_name,
                    )
                )

        matches.sort(key=lambda m: m.confidence, reverse=True)

        per_type: Dict[EntityType, int] = {}
        results = []
        for match in matches:
            if per_type.get(match.type, 0) < params.limit:
                results.append(match)
                per_type[match.type] = per_type.get(match.type, 0) + 1

        logger.debug(
            "entities_resolved",
            query=params.query,
            total_matches=len(matches),
            returned=len(results),
            api_calls=calls.count,
        )
        return EntityResolutionResponse(
            query=params.query,
            results=results,
            total_matches=len(matches),
            cached=was_fresh,
            search_types=params.types,
        )

    def clear_cache(self) -> None:
        self._snapshot = None
        self._snapshot_taken_at = 0.0

    def get_cache_stats(self) -> Dict[str, Any]:
        if self._snapshot is None:
            return {"cached": False, "fetched_at": None, "entities": None}
        return {
            "cached": self._is_fresh(),
            "fetched_at": self._snapshot.fetched_at.isoformat(),
            "entities": {
                "clients": len(self._snapshot.clients),
                "projects": len(self._snapshot.projects),
                "users": len(self._snapshot.users),
                "tasks": len(self._snapshot.tasks),
            },
        }
