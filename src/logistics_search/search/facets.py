"""Facet specifications per collection and bucket formatting."""

import calendar
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import logfire

from logistics_search.database.client import SearchBackend
from logistics_search.database.models import CallerContext, FacetBucket
from logistics_search.search.errors import SearchAuthorizationError
from logistics_search.search.query_builder import QueryBuilder
from logistics_search.search.registry import CollectionDescriptor, CollectionRegistry, registry
from logistics_search.search.role_filter import RoleFilter

FACET_SUFFIX = "Facet"
DATE_DEFAULT_BUCKET = "other"


def _months_ago(now: datetime, months: int) -> datetime:
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def date_boundaries(now: datetime) -> list[datetime]:
    """Trailing bucket edges: 1 year, 6/3/1 months and 1 week ago, then now."""
    now = now.astimezone(timezone.utc).replace(microsecond=0)
    return [
        _months_ago(now, 12),
        _months_ago(now, 6),
        _months_ago(now, 3),
        _months_ago(now, 1),
        now - timedelta(weeks=1),
        now,
    ]


def _string_facet(path: str, num_buckets: int) -> dict[str, Any]:
    return {"type": "string", "path": path, "numBuckets": num_buckets}


def _date_facet(path: str, now: datetime) -> dict[str, Any]:
    return {
        "type": "date",
        "path": path,
        "boundaries": date_boundaries(now),
        "default": DATE_DEFAULT_BUCKET,
    }


FacetSpec = dict[str, dict[str, Any]]

FACET_SPECS: dict[str, Callable[[datetime], FacetSpec]] = {
    "orders": lambda now: {
        "statusFacet": _string_facet("status", 10),
        "createdDateFacet": _date_facet("created_at", now),
    },
    "accounts": lambda now: {
        "accountTypeFacet": _string_facet("account_type", 10),
        "statusFacet": _string_facet("status", 5),
    },
    "fleets": lambda now: {
        "vehicleTypeFacet": _string_facet("vehicle_type", 10),
        "statusFacet": _string_facet("status", 5),
        "makeFacet": _string_facet("make", 20),
    },
    "drivers": lambda now: {
        "statusFacet": _string_facet("status", 5),
    },
    "billings": lambda now: {
        "statusFacet": _string_facet("status", 10),
        "billingDateFacet": _date_facet("billing_date", now),
    },
    "invoices": lambda now: {
        "statusFacet": _string_facet("status", 10),
        "invoiceDateFacet": _date_facet("invoice_date", now),
    },
}


def format_facets(result: dict[str, Any] | None) -> dict[str, list[FacetBucket]]:
    """Reshape ``$searchMeta`` facet output into ``{name: [{value, count}]}``."""
    if not result or not result.get("facet"):
        return {}

    facets: dict[str, list[FacetBucket]] = {}
    for facet_name, facet_data in result["facet"].items():
        buckets = facet_data.get("buckets")
        if buckets is None:
            continue
        name = facet_name.removesuffix(FACET_SUFFIX)
        facets[name] = [
            FacetBucket(value=_bucket_value(b.get("_id")), count=b.get("count", 0))
            for b in buckets
        ]
    return facets


def _bucket_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class FacetPlanner:
    """Computes bucketed counts for one collection.

    Usage:
        planner = FacetPlanner(backend)
        facets = await planner.build_facets("orders", caller)
    """

    def __init__(
        self,
        backend: SearchBackend,
        role_filter: RoleFilter | None = None,
        collections: CollectionRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._backend = backend
        self._role_filter = role_filter or RoleFilter()
        self._collections = collections or registry
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def facet_spec(self, collection: str) -> FacetSpec:
        """Facet definitions for ``collection``; empty when it has none."""
        build = FACET_SPECS.get(collection)
        return build(self._clock()) if build else {}

    async def build_facets(
        self, collection: str, caller: CallerContext
    ) -> dict[str, list[FacetBucket]]:
        """Facets over every record of ``collection`` visible to ``caller``.

        Raises:
            SearchValidationError: Unknown collection
            SearchAuthorizationError: Caller may not search the collection
        """
        descriptor = self._collections.get(collection)
        if not self._role_filter.can_access(caller, collection):
            raise SearchAuthorizationError(f"You do not have access to {collection}")
        return await self.collection_facets(descriptor, caller)

    async def collection_facets(
        self, descriptor: CollectionDescriptor, caller: CallerContext
    ) -> dict[str, list[FacetBucket]]:
        """Facets for an already authorized collection; failures yield ``{}``."""
        spec = self.facet_spec(descriptor.name)
        if not spec or self._role_filter.denies_all(caller, descriptor.name):
            return {}

        pipeline = QueryBuilder.facet_meta_pipeline(
            descriptor.index_name,
            self._match_all(descriptor, caller),
            spec,
        )
        try:
            rows = await self._backend.aggregate(descriptor.name, pipeline)
        except Exception:
            logfire.exception("Facet query failed for {collection}", collection=descriptor.name)
            return {}

        return format_facets(rows[0] if rows else None)

    def _match_all(self, descriptor: CollectionDescriptor, caller: CallerContext) -> dict[str, Any]:
        wildcard = {
            "wildcard": {
                "query": "*",
                "path": descriptor.searchable_fields[0] if descriptor.searchable_fields else "_id",
                "allowAnalyzedField": True,
            }
        }
        filters = self._role_filter.filters_for(caller, descriptor.name)
        if not filters:
            return wildcard
        return {
            "compound": {
                "must": [wildcard],
                "filter": [c.to_operator() for c in filters],
            }
        }
