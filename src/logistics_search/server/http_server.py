"""HTTP server using FastAPI.

Provides:
- /health - Health check endpoint
- /api/v1/search/global - Federated search
- /api/v1/search/autocomplete - Suggestions for one collection
- /api/v1/search/facets - Facet counts for one collection
- /api/v1/search/advanced - Structured per-field search
- / - API info

Authentication happens upstream; the gateway forwards the caller as
X-User-Id, X-User-Role and X-Driver-Id headers.

Run with: uvicorn logistics_search.server.http_server:app --reload
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from logistics_search import __version__
from logistics_search.cache.redis_client import CacheClient
from logistics_search.config import Settings, get_settings
from logistics_search.database.client import DatabaseClient, SearchBackend
from logistics_search.database.models import (
    AdvancedSearchRequest,
    AdvancedSearchResponse,
    AutocompleteResponse,
    CallerContext,
    ErrorResponse,
    FacetResponse,
    GlobalSearchRequest,
    Role,
    SearchEnvelope,
)
from logistics_search.observability.setup import setup_observability
from logistics_search.search.advanced import AdvancedSearchService
from logistics_search.search.autocomplete import AutocompleteEngine
from logistics_search.search.errors import (
    SearchAuthorizationError,
    SearchExecutionError,
    SearchValidationError,
)
from logistics_search.search.facets import FacetPlanner
from logistics_search.search.federated import FederatedSearchService


@dataclass
class Services:
    """Engine components shared by all requests."""

    federated: FederatedSearchService
    autocomplete: AutocompleteEngine
    facets: FacetPlanner
    advanced: AdvancedSearchService
    database: DatabaseClient | None = None
    cache: CacheClient | None = None
    settings: Settings | None = None


def build_services(
    backend: SearchBackend,
    cache: Any = None,
    settings: Settings | None = None,
) -> Services:
    settings = settings or get_settings()
    facets = FacetPlanner(backend)
    return Services(
        federated=FederatedSearchService(backend, settings=settings, facet_planner=facets),
        autocomplete=AutocompleteEngine(backend, cache=cache, settings=settings),
        facets=facets,
        advanced=AdvancedSearchService(backend, settings=settings),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Setup observability
    setup_observability()

    if app.state.services is not None:
        yield
        return

    # Initialize clients
    db_client = DatabaseClient()
    await db_client.connect()

    cache_client = CacheClient()
    await cache_client.connect()

    services = build_services(db_client, cache=cache_client)
    services.database = db_client
    services.cache = cache_client
    app.state.services = services

    yield

    # Cleanup
    await db_client.disconnect()
    await cache_client.disconnect()
    app.state.services = None


def create_app(services: Services | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built engine components. When omitted, the lifespan
            connects to MongoDB and Redis from config.
    """
    app = FastAPI(
        title="Logistics Search",
        description="Federated, role-scoped search across logistics collections",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    register_routes(app)

    return app


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Search service not initialized")
    return services


def get_caller(
    x_user_role: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_driver_id: str | None = Header(default=None),
) -> CallerContext:
    """Caller identity forwarded by the authenticating gateway."""
    try:
        role = Role(x_user_role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Missing or invalid caller role") from None
    return CallerContext(role=role, user_id=x_user_id, driver_id=x_driver_id)


def _error(status_code: int, error: str, detail: str, code: str) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, code=code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Map engine errors onto HTTP status codes."""

    @app.exception_handler(SearchValidationError)
    async def validation_error(request: Request, exc: SearchValidationError) -> JSONResponse:
        return _error(400, "Invalid request", str(exc), "INVALID_PARAMETER")

    @app.exception_handler(SearchAuthorizationError)
    async def authorization_error(request: Request, exc: SearchAuthorizationError) -> JSONResponse:
        return _error(403, "Forbidden", str(exc), "FORBIDDEN_COLLECTION")

    @app.exception_handler(SearchExecutionError)
    async def execution_error(request: Request, exc: SearchExecutionError) -> JSONResponse:
        return _error(502, "Search backend error", str(exc), "SEARCH_BACKEND_ERROR")


def register_routes(app: FastAPI) -> None:
    """Register API routes."""

    @app.get("/")
    async def root() -> dict[str, Any]:
        """API information."""
        return {
            "name": "Logistics Search",
            "version": __version__,
            "description": "Federated, role-scoped search across logistics collections",
        }

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        services: Services | None = request.app.state.services
        db_healthy = False
        cache_healthy = False

        if services and services.database:
            db_healthy = await services.database.health_check()

        if services and services.cache:
            cache_healthy = await services.cache.ping()

        status = "healthy" if (db_healthy and cache_healthy) else "unhealthy"

        return {
            "status": status,
            "version": __version__,
            "database": "connected" if db_healthy else "disconnected",
            "cache": "connected" if cache_healthy else "disconnected",
        }

    @app.post("/api/v1/search/global", response_model=SearchEnvelope)
    async def global_search(
        body: GlobalSearchRequest,
        caller: CallerContext = Depends(get_caller),
        services: Services = Depends(get_services),
    ) -> SearchEnvelope:
        """Federated search endpoint."""
        if not body.query.strip():
            raise SearchValidationError("query is required")

        settings = services.settings or get_settings()
        timeout = settings.search_timeout_ms / 1000
        try:
            return await asyncio.wait_for(
                services.federated.search(body.query, caller, body),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail="Search timed out") from None

    @app.get("/api/v1/search/autocomplete", response_model=AutocompleteResponse)
    async def autocomplete(
        q: str = Query(min_length=1),
        type: str = Query(min_length=1),
        limit: int = Query(default=10, ge=1),
        min_chars: int | None = Query(default=None, ge=1),
        caller: CallerContext = Depends(get_caller),
        services: Services = Depends(get_services),
    ) -> AutocompleteResponse:
        """Autocomplete endpoint."""
        return await services.autocomplete.suggest(
            q, type, caller, limit=limit, min_chars=min_chars
        )

    @app.get("/api/v1/search/facets", response_model=FacetResponse)
    async def facets(
        collection: str = Query(min_length=1),
        caller: CallerContext = Depends(get_caller),
        services: Services = Depends(get_services),
    ) -> FacetResponse:
        """Facet counts endpoint."""
        result = await services.facets.build_facets(collection, caller)
        return FacetResponse(collection=collection, facets=result)

    @app.post("/api/v1/search/advanced", response_model=AdvancedSearchResponse)
    async def advanced(
        body: AdvancedSearchRequest,
        caller: CallerContext = Depends(get_caller),
        services: Services = Depends(get_services),
    ) -> AdvancedSearchResponse:
        """Structured search endpoint."""
        return await services.advanced.search(body, caller)


# Create default app instance
app = create_app()
