"""MongoDB Atlas client used to execute search pipelines.

The engine only builds aggregation pipelines; anything implementing
``SearchBackend`` can run them. ``DatabaseClient`` runs them against Atlas.
"""

from typing import Any, Protocol

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from logistics_search.config import get_settings
from logistics_search.search.errors import SearchExecutionError


class SearchBackend(Protocol):
    """Executes an aggregation pipeline against one collection."""

    async def aggregate(
        self, collection: str, pipeline: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        ...


class DatabaseClient:
    """Async MongoDB client.

    Usage:
        client = DatabaseClient()
        await client.connect()
        # ... use client
        await client.disconnect()

    Or as async context manager:
        async with DatabaseClient() as client:
            # ... use client
    """

    def __init__(self, mongodb_url: str | None = None, database: str | None = None):
        """Initialize the database client.

        Args:
            mongodb_url: MongoDB connection URL. Defaults to config.
            database: Database name. Defaults to config.
        """
        settings = get_settings()
        self._mongodb_url = mongodb_url or settings.mongodb_url
        self._database_name = database or settings.mongodb_database
        self._client: AsyncMongoClient | None = None

    async def connect(self) -> None:
        """Create the client; pymongo connects lazily on first use."""
        if self._client is not None:
            return  # Already connected

        self._client = AsyncMongoClient(
            self._mongodb_url,
            minPoolSize=2,
            maxPoolSize=10,
            tz_aware=True,
        )

    async def disconnect(self) -> None:
        """Close the client and its pool."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def health_check(self) -> bool:
        """Check if the cluster is reachable."""
        if self._client is None:
            return False

        try:
            result = await self._client.admin.command("ping")
            return result.get("ok") == 1
        except PyMongoError:
            return False

    async def aggregate(
        self, collection: str, pipeline: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Run ``pipeline`` on ``collection`` and return every document.

        Raises:
            SearchExecutionError: If the client is not connected or the
                pipeline fails
        """
        if self._client is None:
            raise SearchExecutionError(collection, "database client is not connected")

        try:
            cursor = await self._client[self._database_name][collection].aggregate(pipeline)
            return await cursor.to_list()
        except PyMongoError as e:
            raise SearchExecutionError(collection, str(e)) from e

    async def __aenter__(self) -> "DatabaseClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()
