"""Atlas Search query tree construction.

Clauses are immutable values. Each one renders to its Atlas Search operator
with ``to_operator()``; the builder also assembles the aggregation pipelines
handed to the document store.

Compound semantics follow Atlas Search: ``filter`` clauses must match and do
not score, ``mustNot`` excludes, and ``should`` clauses only affect ranking
unless the compound has no ``must`` clause, in which case at least one
``should`` clause has to match. The builder never adds a ``must`` clause on
its own, so a should-only compound keeps that behaviour.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from logistics_search.config import Settings, get_settings

FALLBACK_TEXT_BOOST = 0.5
DEFAULT_MAX_CHARS_TO_EXAMINE = 500000
DEFAULT_MAX_NUM_PASSAGES = 5


@dataclass(frozen=True)
class FuzzyConfig:
    """Typo tolerance for text and autocomplete clauses."""

    max_edits: int = 2
    prefix_length: int = 0
    max_expansions: int = 50

    @classmethod
    def from_settings(cls, settings: Settings) -> "FuzzyConfig":
        return cls(
            max_edits=settings.fuzzy_max_edits,
            prefix_length=settings.fuzzy_prefix_length,
            max_expansions=settings.fuzzy_max_expansions,
        )

    def clamped(self, ceiling: int) -> "FuzzyConfig":
        """Copy with ``max_edits`` limited to ``ceiling``."""
        if self.max_edits <= ceiling:
            return self
        return FuzzyConfig(ceiling, self.prefix_length, self.max_expansions)

    def to_operator(self) -> dict[str, int]:
        return {
            "maxEdits": self.max_edits,
            "prefixLength": self.prefix_length,
            "maxExpansions": self.max_expansions,
        }


def _score(boost: float | None) -> dict[str, Any]:
    return {"score": {"boost": {"value": boost}}} if boost is not None else {}


@dataclass(frozen=True)
class TextClause:
    query: str
    paths: tuple[str, ...]
    fuzzy: FuzzyConfig | None = None
    boost: float | None = None

    def to_operator(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "query": self.query,
            "path": self.paths[0] if len(self.paths) == 1 else list(self.paths),
        }
        if self.fuzzy is not None:
            body["fuzzy"] = self.fuzzy.to_operator()
        body.update(_score(self.boost))
        return {"text": body}


@dataclass(frozen=True)
class AutocompleteClause:
    query: str
    path: str
    fuzzy: FuzzyConfig | None = None
    boost: float | None = None

    def to_operator(self) -> dict[str, Any]:
        body: dict[str, Any] = {"query": self.query, "path": self.path}
        if self.fuzzy is not None:
            body["fuzzy"] = self.fuzzy.to_operator()
        body.update(_score(self.boost))
        return {"autocomplete": body}


@dataclass(frozen=True)
class RangeClause:
    path: str
    gte: Any = None
    lte: Any = None

    def to_operator(self) -> dict[str, Any]:
        body: dict[str, Any] = {"path": self.path}
        if self.gte is not None:
            body["gte"] = self.gte
        if self.lte is not None:
            body["lte"] = self.lte
        return {"range": body}


@dataclass(frozen=True)
class EqualsClause:
    path: str
    value: Any

    def to_operator(self) -> dict[str, Any]:
        return {"equals": {"path": self.path, "value": self.value}}


@dataclass(frozen=True)
class InClause:
    path: str
    values: tuple[Any, ...]

    def to_operator(self) -> dict[str, Any]:
        return {"in": {"path": self.path, "value": list(self.values)}}


@dataclass(frozen=True)
class CompoundClause:
    must: tuple["QueryClause", ...] = ()
    should: tuple["QueryClause", ...] = ()
    must_not: tuple["QueryClause", ...] = ()
    filter: tuple["QueryClause", ...] = ()
    minimum_should_match: int | None = None

    def to_operator(self) -> dict[str, Any]:
        compound: dict[str, Any] = {}
        if self.should:
            compound["should"] = [c.to_operator() for c in self.should]
        if self.must:
            compound["must"] = [c.to_operator() for c in self.must]
        if self.must_not:
            compound["mustNot"] = [c.to_operator() for c in self.must_not]
        if self.filter:
            compound["filter"] = [c.to_operator() for c in self.filter]
        if self.minimum_should_match is not None:
            compound["minimumShouldMatch"] = self.minimum_should_match
        return {"compound": compound}


QueryClause = Union[
    TextClause,
    AutocompleteClause,
    RangeClause,
    EqualsClause,
    InClause,
    CompoundClause,
]


@dataclass(frozen=True)
class HighlightConfig:
    paths: tuple[str, ...]
    max_chars_to_examine: int = DEFAULT_MAX_CHARS_TO_EXAMINE
    max_num_passages: int = DEFAULT_MAX_NUM_PASSAGES

    def to_operator(self) -> dict[str, Any]:
        return {
            "path": list(self.paths),
            "maxCharsToExamine": self.max_chars_to_examine,
            "maxNumPassages": self.max_num_passages,
        }


class QueryBuilder:
    """Builds clauses and pipelines for one query text.

    Usage:
        builder = QueryBuilder("ORD-1001")
        clause = builder.compound_search(
            should=[builder.autocomplete_search("order_number_autocomplete")],
            filter=[builder.equals_filter("driver_id", driver_id)],
        )
        pipeline = builder.paged_results_pipeline("orders_search", clause, skip=0, limit=20)
    """

    def __init__(
        self,
        query_text: str = "",
        fuzzy: FuzzyConfig | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the builder.

        Args:
            query_text: Text matched by text and autocomplete clauses
            fuzzy: Per-request fuzzy override. ``max_edits`` is clamped to
                the configured ceiling.
            settings: Source of fuzzy defaults. Defaults to config.
        """
        settings = settings or get_settings()
        self.query_text = query_text
        fuzzy = (fuzzy or FuzzyConfig.from_settings(settings)).clamped(
            settings.fuzzy_max_edits_ceiling
        )
        # Atlas rejects maxEdits below 1; zero means exact matching
        self.fuzzy: FuzzyConfig | None = fuzzy if fuzzy.max_edits >= 1 else None

    # Clause vocabulary

    def text_search(
        self,
        paths: str | Sequence[str],
        fuzzy: bool = True,
        boost: float | None = None,
    ) -> TextClause:
        if isinstance(paths, str):
            paths = (paths,)
        return TextClause(
            query=self.query_text,
            paths=tuple(paths),
            fuzzy=self.fuzzy if fuzzy else None,
            boost=boost,
        )

    def autocomplete_search(
        self,
        path: str,
        fuzzy: bool = True,
        boost: float | None = None,
    ) -> AutocompleteClause:
        return AutocompleteClause(
            query=self.query_text,
            path=path,
            fuzzy=self.fuzzy if fuzzy else None,
            boost=boost,
        )

    def range_filter(self, path: str, min: Any = None, max: Any = None) -> RangeClause:
        if min is None and max is None:
            raise ValueError(f"Range filter on {path!r} needs at least one bound")
        return RangeClause(path=path, gte=min, lte=max)

    def equals_filter(self, path: str, value: Any) -> EqualsClause:
        return EqualsClause(path=path, value=value)

    def in_filter(self, path: str, values: Iterable[Any]) -> InClause:
        return InClause(path=path, values=tuple(values))

    def compound_search(
        self,
        must: Iterable[QueryClause] = (),
        should: Iterable[QueryClause] = (),
        must_not: Iterable[QueryClause] = (),
        filter: Iterable[QueryClause] = (),
        minimum_should_match: int | None = None,
    ) -> CompoundClause:
        return CompoundClause(
            must=tuple(must),
            should=tuple(should),
            must_not=tuple(must_not),
            filter=tuple(filter),
            minimum_should_match=minimum_should_match,
        )

    def multi_field_search(self, field_configs: Iterable[dict[str, Any]]) -> CompoundClause:
        """Should-compound of text clauses, one per ``{"path", "boost", "fuzzy"}`` config."""
        should = [
            self.text_search(
                config["path"],
                fuzzy=config.get("fuzzy", True),
                boost=config.get("boost"),
            )
            for config in field_configs
        ]
        return self.compound_search(should=should)

    def autocomplete_with_fallback(
        self,
        autocomplete_path: str,
        text_path: str,
        boost: float | None = None,
    ) -> CompoundClause:
        """Autocomplete match plus a weaker fuzzy text match on the same field.

        Partial queries still surface results while the autocomplete index
        is sparse.
        """
        return self.compound_search(
            should=[
                self.autocomplete_search(autocomplete_path, fuzzy=True, boost=boost),
                TextClause(
                    query=self.query_text,
                    paths=(text_path,),
                    fuzzy=self.fuzzy,
                    boost=FALLBACK_TEXT_BOOST,
                ),
            ]
        )

    def highlight_spec(self, paths: Iterable[str]) -> HighlightConfig:
        return HighlightConfig(paths=tuple(paths))

    # Pipeline assembly

    @staticmethod
    def search_stage(
        index_name: str,
        clause: QueryClause,
        highlight: HighlightConfig | None = None,
    ) -> dict[str, Any]:
        stage: dict[str, Any] = {"index": index_name, **clause.to_operator()}
        if highlight is not None:
            stage["highlight"] = highlight.to_operator()
        return {"$search": stage}

    def paged_results_pipeline(
        self,
        index_name: str,
        clause: QueryClause,
        skip: int,
        limit: int,
        highlight: HighlightConfig | None = None,
    ) -> list[dict[str, Any]]:
        """One page of scored hits plus the total match count."""
        results: list[dict[str, Any]] = []
        if skip > 0:
            results.append({"$skip": skip})
        results.append({"$limit": limit})

        meta: dict[str, Any] = {"score": {"$meta": "searchScore"}}
        if highlight is not None:
            meta["highlights"] = {"$meta": "searchHighlights"}
        results.append({"$addFields": meta})

        return [
            self.search_stage(index_name, clause, highlight),
            {
                "$facet": {
                    "results": results,
                    "totalCount": [{"$count": "count"}],
                }
            },
        ]

    def count_pipeline(self, index_name: str, clause: QueryClause) -> list[dict[str, Any]]:
        return [self.search_stage(index_name, clause), {"$count": "count"}]

    @staticmethod
    def facet_meta_pipeline(
        index_name: str,
        operator: QueryClause | dict[str, Any],
        facets: dict[str, dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """``$searchMeta`` facet collector over ``operator``."""
        if not isinstance(operator, dict):
            operator = operator.to_operator()
        return [
            {
                "$searchMeta": {
                    "index": index_name,
                    "facet": {"operator": operator, "facets": facets},
                }
            }
        ]
