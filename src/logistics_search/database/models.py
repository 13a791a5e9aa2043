"""Pydantic models for callers and API contracts.

Field names are part of the HTTP contract; keep them stable.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from logistics_search.config import get_settings


class Role(str, Enum):
    """Closed set of caller roles."""

    ADMIN = "admin"
    DISPATCHER = "dispatcher"
    BILLING = "billing"
    DRIVER = "driver"
    FLEET_MANAGER = "fleet_manager"


class CallerContext(BaseModel):
    """Authenticated caller, read-only input to scoping decisions."""

    model_config = ConfigDict(frozen=True)

    role: Role
    user_id: str | None = None
    driver_id: str | None = None


class FuzzyOverride(BaseModel):
    """Per-request fuzzy settings; missing values fall back to config."""

    max_edits: int | None = Field(default=None, ge=1)
    prefix_length: int | None = Field(default=None, ge=0)
    max_expansions: int | None = Field(default=None, ge=1)


class DateRange(BaseModel):
    start: datetime | None = None
    end: datetime | None = None


class SearchFilters(BaseModel):
    status: list[str] = Field(default_factory=list)
    date_range: DateRange | None = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


def _at_least_one(v: Any) -> int:
    try:
        value = int(v)
    except (TypeError, ValueError):
        return 1
    return max(value, 1)


class SearchOptions(BaseModel):
    """Options for a federated search. ``page`` and ``limit`` coerce to >= 1."""

    search_type: str = "all"
    page: int = 1
    limit: int = Field(default_factory=lambda: get_settings().default_page_limit)
    include_highlights: bool = True
    include_facets: bool = False
    include_empty: bool = False
    filters: SearchFilters = Field(default_factory=SearchFilters)
    fuzzy: FuzzyOverride | None = None

    @field_validator("page", "limit", mode="before")
    @classmethod
    def coerce_positive(cls, v: Any) -> int:
        return _at_least_one(v)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


class GlobalSearchRequest(SearchOptions):
    """Federated search request body."""

    query: str = Field(default="", max_length=1000)


class CollectionResult(BaseModel):
    """Matches in one collection: total count and the requested page."""

    count: int = Field(default=0, ge=0)
    items: list[dict[str, Any]] = Field(default_factory=list)


class FacetBucket(BaseModel):
    value: Any
    count: int = Field(ge=0)


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    limit: int
    total_count: int


class SearchEnvelope(BaseModel):
    """Federated search response.

    ``pagination.total_pages`` is derived from the summed per-collection
    counts, while every collection is paged on its own. It does not describe
    a single merged ordering.
    """

    success: bool = True
    query: str
    total_results: int = 0
    search_time_ms: float = 0.0
    results: dict[str, CollectionResult] = Field(default_factory=dict)
    facets: dict[str, list[FacetBucket]] = Field(default_factory=dict)
    pagination: Pagination


class Suggestion(BaseModel):
    text: str
    type: str
    collection: str
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class AutocompleteResponse(BaseModel):
    success: bool = True
    query: str
    suggestions: list[Suggestion] = Field(default_factory=list)
    count: int = 0
    query_time_ms: float = 0.0


class FacetResponse(BaseModel):
    success: bool = True
    collection: str
    facets: dict[str, list[FacetBucket]] = Field(default_factory=dict)


class RangeCriterion(BaseModel):
    min: Any = None
    max: Any = None

    @model_validator(mode="after")
    def require_bound(self) -> "RangeCriterion":
        if self.min is None and self.max is None:
            raise ValueError("range criterion needs min or max")
        return self


class AdvancedSearchRequest(BaseModel):
    """Structured per-field criteria against one collection.

    A list value matches any of its members, a ``{min, max}`` value is an
    inclusive range, a string is a fuzzy text match and any other scalar
    must match exactly.
    """

    collection: str = "orders"
    criteria: dict[str, RangeCriterion | list[Any] | str | int | float | bool] = Field(
        default_factory=dict
    )
    limit: int = 20

    @field_validator("limit", mode="before")
    @classmethod
    def coerce_limit(cls, v: Any) -> int:
        return _at_least_one(v)


class AdvancedSearchResponse(BaseModel):
    success: bool = True
    collection: str
    count: int = 0
    results: list[dict[str, Any]] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: str | None = None
    code: str  # e.g., "INVALID_PARAMETER", "FORBIDDEN_COLLECTION"
