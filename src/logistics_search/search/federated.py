"""Federated search across every collection the caller may see.

Coordinates the complete pipeline:
1. Resolve target collections from ``search_type`` and the caller's role
2. Build one role-scoped compound query per collection
3. Execute all collections concurrently; a failing collection counts as empty
4. Merge counts and pages into one envelope
5. Optionally compute a ``collection_type`` facet plus per-collection facets

Known limitation: every collection is paginated on its own, but
``total_pages`` is computed from the summed counts. It is not the page
count of one merged ordering.
"""

import asyncio
import math
import time
from typing import Any

import logfire

from logistics_search.config import Settings, get_settings
from logistics_search.database.client import SearchBackend
from logistics_search.database.models import (
    CallerContext,
    CollectionResult,
    FacetBucket,
    Pagination,
    SearchEnvelope,
    SearchOptions,
)
from logistics_search.search.errors import SearchAuthorizationError, SearchValidationError
from logistics_search.search.facets import FacetPlanner
from logistics_search.search.query_builder import FuzzyConfig, QueryBuilder, QueryClause
from logistics_search.search.registry import CollectionDescriptor, CollectionRegistry, registry
from logistics_search.search.role_filter import RoleFilter

SEARCH_TYPE_ALL = "all"
AUTOCOMPLETE_BOOST = 2.0
TEXT_BOOST = 1.0
COLLECTION_TYPE_FACET = "collection_type"


def build_pagination(total_count: int, page: int, limit: int) -> Pagination:
    return Pagination(
        current_page=page,
        total_pages=math.ceil(total_count / limit),
        limit=limit,
        total_count=total_count,
    )


class FederatedSearchService:
    """Runs one query against many collections and merges the results.

    Usage:
        service = FederatedSearchService(backend)
        envelope = await service.search("ORD-1001", caller, SearchOptions(limit=10))
    """

    def __init__(
        self,
        backend: SearchBackend,
        settings: Settings | None = None,
        role_filter: RoleFilter | None = None,
        facet_planner: FacetPlanner | None = None,
        collections: CollectionRegistry | None = None,
    ):
        """Initialize the search service.

        Args:
            backend: Executes aggregation pipelines
            settings: Fuzzy defaults and ceiling. Defaults to config.
            role_filter: Capability and row-level scoping
            facet_planner: Per-collection facets (created if not provided)
            collections: Collection registry
        """
        self._backend = backend
        self._settings = settings or get_settings()
        self._role_filter = role_filter or RoleFilter()
        self._collections = collections or registry
        self._facet_planner = facet_planner or FacetPlanner(
            backend, role_filter=self._role_filter, collections=self._collections
        )

    def target_collections(
        self, caller: CallerContext, search_type: str
    ) -> list[CollectionDescriptor]:
        """Collections to search for ``search_type``.

        Raises:
            SearchValidationError: ``search_type`` is neither ``all`` nor a collection
            SearchAuthorizationError: The named collection is off-limits to the caller
        """
        if search_type and search_type != SEARCH_TYPE_ALL:
            if search_type not in self._collections:
                raise SearchValidationError(
                    f"search_type must be '{SEARCH_TYPE_ALL}' or one of: "
                    f"{', '.join(self._collections.names)}"
                )
            if not self._role_filter.can_access(caller, search_type):
                raise SearchAuthorizationError(f"You do not have access to {search_type}")
            return [self._collections.get(search_type)]

        return [d for d in self._collections if self._role_filter.can_access(caller, d.name)]

    async def search(
        self,
        query: str,
        caller: CallerContext,
        options: SearchOptions | None = None,
    ) -> SearchEnvelope:
        """Execute a federated search.

        Args:
            query: Free-text query; blank queries return an empty envelope
            caller: Authenticated caller
            options: Paging, filters and side channels

        Returns:
            SearchEnvelope with per-collection results
        """
        start_time = time.perf_counter()
        options = options or SearchOptions(limit=self._settings.default_page_limit)
        query = (query or "").strip()

        if not query:
            return SearchEnvelope(
                query=query,
                pagination=build_pagination(0, options.page, options.limit),
            )

        targets = self.target_collections(caller, options.search_type)
        builder = QueryBuilder(query, fuzzy=self._fuzzy(options), settings=self._settings)

        with logfire.span(
            "federated search",
            collections=[d.name for d in targets],
            role=caller.role.value,
        ):
            searches = [
                self._search_collection(builder, descriptor, caller, options)
                for descriptor in targets
            ]
            if options.include_facets:
                collection_results, facets = await asyncio.gather(
                    asyncio.gather(*searches),
                    self._build_facets(builder, targets, caller, options),
                )
            else:
                collection_results = await asyncio.gather(*searches)
                facets = {}

        results = {
            descriptor.name: result
            for descriptor, result in zip(targets, collection_results)
            if result.count > 0 or options.include_empty
        }
        total_count = sum(r.count for r in collection_results)

        return SearchEnvelope(
            query=query,
            total_results=total_count,
            search_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            results=results,
            facets=facets,
            pagination=build_pagination(total_count, options.page, options.limit),
        )

    def build_query(
        self,
        builder: QueryBuilder,
        descriptor: CollectionDescriptor,
        caller: CallerContext,
        options: SearchOptions,
    ) -> QueryClause:
        """Role-scoped, filtered query for one collection."""
        should: list[QueryClause] = [
            builder.autocomplete_with_fallback(autocomplete_path, text_path, boost=AUTOCOMPLETE_BOOST)
            for text_path, autocomplete_path in descriptor.autocomplete_fields.items()
        ]
        should.extend(
            builder.text_search(field, fuzzy=True, boost=TEXT_BOOST)
            for field in descriptor.text_only_fields
        )
        clause: QueryClause = builder.compound_search(should=should)

        filters = list(self._role_filter.filters_for(caller, descriptor.name))
        if options.filters.status:
            filters.append(builder.in_filter(descriptor.status_field, options.filters.status))
        date_range = options.filters.date_range
        if date_range is not None and (date_range.start or date_range.end):
            filters.append(
                builder.range_filter(descriptor.date_field, min=date_range.start, max=date_range.end)
            )

        if filters:
            clause = builder.compound_search(must=[clause], filter=filters)
        return clause

    async def _search_collection(
        self,
        builder: QueryBuilder,
        descriptor: CollectionDescriptor,
        caller: CallerContext,
        options: SearchOptions,
    ) -> CollectionResult:
        if self._role_filter.denies_all(caller, descriptor.name):
            return CollectionResult()

        clause = self.build_query(builder, descriptor, caller, options)
        highlight = (
            builder.highlight_spec(descriptor.searchable_fields)
            if options.include_highlights
            else None
        )
        pipeline = builder.paged_results_pipeline(
            descriptor.index_name,
            clause,
            skip=options.skip,
            limit=options.limit,
            highlight=highlight,
        )

        try:
            rows = await self._backend.aggregate(descriptor.name, pipeline)
        except Exception:
            logfire.exception("Collection search failed for {collection}", collection=descriptor.name)
            return CollectionResult()

        return self._format_collection(rows, descriptor, options.limit)

    @staticmethod
    def _format_collection(
        rows: list[dict[str, Any]], descriptor: CollectionDescriptor, limit: int
    ) -> CollectionResult:
        if not rows:
            return CollectionResult()

        result = rows[0]
        total = result.get("totalCount") or []
        count = total[0].get("count", 0) if total else 0
        items = [descriptor.format_item(doc) for doc in (result.get("results") or [])[:limit]]
        return CollectionResult(count=count, items=items)

    async def _count_collection(
        self,
        builder: QueryBuilder,
        descriptor: CollectionDescriptor,
        caller: CallerContext,
        options: SearchOptions,
    ) -> int:
        if self._role_filter.denies_all(caller, descriptor.name):
            return 0

        clause = self.build_query(builder, descriptor, caller, options)
        try:
            rows = await self._backend.aggregate(
                descriptor.name, builder.count_pipeline(descriptor.index_name, clause)
            )
        except Exception:
            logfire.exception("Count failed for {collection}", collection=descriptor.name)
            return 0
        return rows[0].get("count", 0) if rows else 0

    async def _build_facets(
        self,
        builder: QueryBuilder,
        targets: list[CollectionDescriptor],
        caller: CallerContext,
        options: SearchOptions,
    ) -> dict[str, list[FacetBucket]]:
        counts, per_collection = await asyncio.gather(
            asyncio.gather(
                *(self._count_collection(builder, d, caller, options) for d in targets)
            ),
            asyncio.gather(
                *(self._facet_planner.collection_facets(d, caller) for d in targets)
            ),
        )

        facets: dict[str, list[FacetBucket]] = {
            COLLECTION_TYPE_FACET: [
                FacetBucket(value=d.name, count=count) for d, count in zip(targets, counts)
            ]
        }
        # Same-named facets from later collections replace earlier ones
        for collection_facets in per_collection:
            facets.update(collection_facets)
        return facets

    def _fuzzy(self, options: SearchOptions) -> FuzzyConfig | None:
        if options.fuzzy is None:
            return None
        defaults = FuzzyConfig.from_settings(self._settings)
        override = options.fuzzy
        return FuzzyConfig(
            max_edits=override.max_edits if override.max_edits is not None else defaults.max_edits,
            prefix_length=(
                override.prefix_length
                if override.prefix_length is not None
                else defaults.prefix_length
            ),
            max_expansions=(
                override.max_expansions
                if override.max_expansions is not None
                else defaults.max_expansions
            ),
        )
