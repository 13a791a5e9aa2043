"""Structured per-field search against a single collection."""

from typing import Any

import logfire

from logistics_search.config import Settings, get_settings
from logistics_search.database.client import SearchBackend
from logistics_search.database.models import (
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    CallerContext,
    RangeCriterion,
)
from logistics_search.search.errors import SearchAuthorizationError, SearchValidationError
from logistics_search.search.query_builder import QueryBuilder, QueryClause
from logistics_search.search.registry import CollectionRegistry, registry
from logistics_search.search.role_filter import RoleFilter, entity_id


def _as_reference(value: Any) -> Any:
    if isinstance(value, list):
        return [_as_reference(v) for v in value]
    return entity_id(value) if isinstance(value, str) else value


class AdvancedSearchService:
    """Turns field criteria into a compound query.

    Lists become ``in`` clauses, ranges become ``range`` clauses and
    numbers, booleans and ids become ``equals`` clauses, all required.
    Strings become fuzzy text clauses that only influence ranking once a
    required clause exists. Values of ``_id`` and ``*_id`` fields that are
    24-hex strings are matched as ObjectIds.
    """

    def __init__(
        self,
        backend: SearchBackend,
        settings: Settings | None = None,
        role_filter: RoleFilter | None = None,
        collections: CollectionRegistry | None = None,
    ):
        self._backend = backend
        self._settings = settings or get_settings()
        self._role_filter = role_filter or RoleFilter()
        self._collections = collections or registry

    async def search(
        self, request: AdvancedSearchRequest, caller: CallerContext
    ) -> AdvancedSearchResponse:
        """Run ``request`` for ``caller``.

        Raises:
            SearchValidationError: Unknown collection, no criteria, or unknown field
            SearchAuthorizationError: Caller may not search the collection
        """
        if not request.criteria:
            raise SearchValidationError("At least one search parameter is required")

        descriptor = self._collections.get(request.collection)
        if not self._role_filter.can_access(caller, descriptor.name):
            raise SearchAuthorizationError("Unauthorized access to collection")

        unknown = sorted(set(request.criteria) - descriptor.queryable_fields)
        if unknown:
            raise SearchValidationError(
                f"Unsupported fields for {descriptor.name}: {', '.join(unknown)}"
            )

        if self._role_filter.denies_all(caller, descriptor.name):
            return AdvancedSearchResponse(collection=descriptor.name)

        builder = QueryBuilder(settings=self._settings)
        must: list[QueryClause] = []
        should: list[QueryClause] = []
        for field, value in request.criteria.items():
            if field == "_id" or field.endswith("_id"):
                value = _as_reference(value)

            if isinstance(value, list):
                must.append(builder.in_filter(field, value))
            elif isinstance(value, RangeCriterion):
                must.append(builder.range_filter(field, min=value.min, max=value.max))
            elif isinstance(value, str):
                should.append(
                    QueryBuilder(value, settings=self._settings).text_search([field], fuzzy=True)
                )
            else:
                must.append(builder.equals_filter(field, value))

        # Atlas treats should as optional once filter is present
        clause = builder.compound_search(
            must=must,
            should=should,
            filter=self._role_filter.filters_for(caller, descriptor.name),
            minimum_should_match=1 if should and not must else None,
        )
        pipeline: list[dict[str, Any]] = [
            builder.search_stage(descriptor.index_name, clause),
            {"$limit": request.limit},
            {"$addFields": {"score": {"$meta": "searchScore"}}},
        ]

        with logfire.span("advanced search {collection}", collection=descriptor.name):
            rows = await self._backend.aggregate(descriptor.name, pipeline)

        results = [descriptor.format_item(row) for row in rows]
        return AdvancedSearchResponse(
            collection=descriptor.name,
            count=len(results),
            results=results,
        )
