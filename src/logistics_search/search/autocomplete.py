"""Autocomplete suggestions for one collection.

Pipeline:
1. Reject short queries and inaccessible collections (empty response)
2. Check cache
3. Autocomplete search over every autocomplete field, role-scoped
4. Store in cache
"""

import time
from typing import Any

import logfire

from logistics_search.cache.redis_client import SearchCache, generate_cache_key
from logistics_search.config import Settings, get_settings
from logistics_search.database.client import SearchBackend
from logistics_search.database.models import AutocompleteResponse, CallerContext, Suggestion
from logistics_search.search.query_builder import QueryBuilder
from logistics_search.search.registry import CollectionDescriptor, CollectionRegistry, registry
from logistics_search.search.role_filter import RoleFilter

DEFAULT_LIMIT = 10


class AutocompleteEngine:
    """Prefix/fuzzy suggestions for partial queries.

    Usage:
        engine = AutocompleteEngine(backend, cache_client)
        response = await engine.suggest("ORD-10", "orders", caller)
    """

    def __init__(
        self,
        backend: SearchBackend,
        cache: SearchCache | None = None,
        settings: Settings | None = None,
        role_filter: RoleFilter | None = None,
        collections: CollectionRegistry | None = None,
    ):
        """Initialize the engine.

        Args:
            backend: Executes the autocomplete pipeline
            cache: Optional suggestion cache; unused when caching is disabled
            settings: Minimum characters, result cap and cache TTL. Defaults to config.
            role_filter: Row-level scoping
            collections: Collection registry
        """
        self._backend = backend
        self._settings = settings or get_settings()
        self._cache = cache if self._settings.enable_search_cache else None
        self._role_filter = role_filter or RoleFilter()
        self._collections = collections or registry

    async def suggest(
        self,
        query: str,
        collection: str,
        caller: CallerContext,
        limit: int | None = None,
        min_chars: int | None = None,
    ) -> AutocompleteResponse:
        """Suggest completions for ``query`` in ``collection``.

        Raises:
            SearchValidationError: Unknown collection
        """
        start_time = time.perf_counter()
        query = (query or "").strip()
        descriptor = self._collections.get(collection)

        min_chars = min_chars if min_chars is not None else self._settings.autocomplete_min_chars
        limit = min(max(limit or DEFAULT_LIMIT, 1), self._settings.autocomplete_max_results)

        if len(query) < min_chars:
            return AutocompleteResponse(query=query)
        if not self._role_filter.can_access(caller, collection):
            return AutocompleteResponse(query=query)
        if self._role_filter.denies_all(caller, collection):
            return AutocompleteResponse(query=query)

        cache_key = generate_cache_key(
            collection=collection,
            role=caller.role.value,
            query=query,
            scope=self._role_filter.scope_key(caller),
            limit=limit,
        )
        cached = await self._cache_get(cache_key)
        if cached is not None:
            return AutocompleteResponse(**cached)

        try:
            with logfire.span("autocomplete {collection}", collection=collection):
                hits = await self._search(query, descriptor, caller, limit)
        except Exception:
            logfire.exception("Autocomplete failed for {collection}", collection=collection)
            return AutocompleteResponse(query=query)

        suggestions = [self._format_suggestion(hit, descriptor) for hit in hits]
        response = AutocompleteResponse(
            query=query,
            suggestions=suggestions,
            count=len(suggestions),
            query_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

        await self._cache_set(cache_key, response.model_dump(mode="json"))
        return response

    async def _search(
        self,
        query: str,
        descriptor: CollectionDescriptor,
        caller: CallerContext,
        limit: int,
    ) -> list[dict[str, Any]]:
        if not descriptor.autocomplete_fields:
            return []

        builder = QueryBuilder(query, settings=self._settings)
        should = [
            builder.autocomplete_search(path, fuzzy=True)
            for path in descriptor.autocomplete_fields.values()
        ]
        clause = should[0] if len(should) == 1 else builder.compound_search(should=should)

        filters = self._role_filter.filters_for(caller, descriptor.name)
        if filters:
            clause = builder.compound_search(must=[clause], filter=filters)

        pipeline = [
            builder.search_stage(descriptor.index_name, clause),
            {"$limit": limit},
            {"$project": self._projection(descriptor)},
        ]
        return await self._backend.aggregate(descriptor.name, pipeline)

    @staticmethod
    def _projection(descriptor: CollectionDescriptor) -> dict[str, Any]:
        projection: dict[str, Any] = {"_id": 1, "score": {"$meta": "searchScore"}}
        for field in (*descriptor.searchable_fields, *descriptor.autocomplete_fields):
            projection[field] = 1
        return projection

    @staticmethod
    def _format_suggestion(hit: dict[str, Any], descriptor: CollectionDescriptor) -> Suggestion:
        primary = descriptor.primary_autocomplete_field or ""
        value = hit.get(primary)
        score = float(hit.get("score") or 0.0)
        return Suggestion(
            text="" if value is None else str(value),
            type=primary,
            collection=descriptor.name,
            score=score,
            metadata={"id": str(hit.get("_id", "")), "score": score},
        )

    async def _cache_get(self, key: str) -> dict[str, Any] | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except Exception:
            logfire.warn("Autocomplete cache read failed; continuing uncached")
            return None

    async def _cache_set(self, key: str, value: dict[str, Any]) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, ttl=self._settings.search_cache_ttl_seconds)
        except Exception:
            logfire.warn("Autocomplete cache write failed")
