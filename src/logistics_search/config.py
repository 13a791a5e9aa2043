"""Application configuration loaded from environment variables.

Settings are read once per process and frozen. Components receive the
settings object at construction time instead of reading globals.
"""

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Environment variables (all optional):
    - MONGODB_URL / MONGODB_DATABASE: Atlas cluster holding the collections
    - REDIS_URL: Redis connection string for the autocomplete cache
    - FUZZY_MAX_EDITS, FUZZY_PREFIX_LENGTH, FUZZY_MAX_EXPANSIONS: fuzzy defaults
    - AUTOCOMPLETE_MIN_CHARS, AUTOCOMPLETE_MAX_RESULTS
    - ENABLE_SEARCH_CACHE, SEARCH_CACHE_TTL_SECONDS
    """

    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Document store
    mongodb_url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB Atlas connection URL",
        min_length=1,
    )
    mongodb_database: str = Field(
        default="logistics",
        description="Database holding the searchable collections",
        min_length=1,
    )

    # Cache
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL",
    )
    enable_search_cache: bool = Field(
        default=True,
        description="Cache autocomplete suggestions in Redis",
    )
    search_cache_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="TTL for cached autocomplete suggestions",
    )

    # Fuzzy matching (Atlas Search allows at most 2 edits)
    fuzzy_max_edits: int = Field(default=2, ge=1, le=2)
    fuzzy_prefix_length: int = Field(default=0, ge=0)
    fuzzy_max_expansions: int = Field(default=50, ge=1)
    fuzzy_max_edits_ceiling: int = Field(
        default=2,
        ge=1,
        le=2,
        description="Upper bound for per-request maxEdits overrides",
    )

    # Autocomplete
    autocomplete_min_chars: int = Field(default=2, ge=1)
    autocomplete_max_results: int = Field(default=10, ge=1)

    # Federated search
    default_page_limit: int = Field(default=20, ge=1)
    search_timeout_ms: int = Field(
        default=5000,
        ge=1,
        description="Request ceiling applied by the HTTP layer",
    )

    # Observability
    logfire_token: str | None = Field(
        default=None,
        description="Logfire observability token",
    )

    # Application
    environment: str = Field(
        default="development",
        description="Environment name (development, staging, production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )

    @field_validator("mongodb_url")
    @classmethod
    def validate_mongodb_url(cls, v: str) -> str:
        """Validate MongoDB URL scheme."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("MONGODB_URL must be a mongodb:// or mongodb+srv:// URL")
        return v

    @model_validator(mode="after")
    def validate_fuzzy_defaults(self) -> "Settings":
        """Default maxEdits may not exceed the configured ceiling."""
        if self.fuzzy_max_edits > self.fuzzy_max_edits_ceiling:
            raise ValueError("FUZZY_MAX_EDITS cannot exceed FUZZY_MAX_EDITS_CEILING")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache for singleton pattern - settings are loaded once
    and reused across the application.
    """
    return Settings()
