"""Stage 3.2: Autocomplete Engine Tests.

These tests verify the suggestion pipeline:
minimum length → access check → cache check → scoped search → cache store

Run with: uv run pytest tests/stage_3/test_autocomplete.py -v
"""

from unittest.mock import AsyncMock

import pytest

from logistics_search.config import Settings
from logistics_search.search.autocomplete import AutocompleteEngine
from logistics_search.search.errors import SearchValidationError

pytestmark = pytest.mark.stage3


@pytest.fixture
def engine(backend, cache, settings) -> AutocompleteEngine:
    return AutocompleteEngine(backend, cache=cache, settings=settings)


@pytest.mark.asyncio
async def test_suggests_matching_order(engine, admin) -> None:
    """Test a prefix query against the order number."""
    response = await engine.suggest("TEST-0", "orders", admin)

    assert response.success is True
    assert response.count == 1
    (suggestion,) = response.suggestions
    assert suggestion.text == "ORD-TEST-001"
    assert suggestion.type == "order_number"
    assert suggestion.collection == "orders"
    assert suggestion.metadata["score"] == suggestion.score
    assert suggestion.metadata["id"]


@pytest.mark.asyncio
async def test_suggestion_text_uses_primary_field(engine, admin) -> None:
    """Test that driver suggestions show the full name."""
    response = await engine.suggest("Smi", "drivers", admin)

    assert [s.text for s in response.suggestions] == ["Jordan Smith"]
    assert response.suggestions[0].type == "full_name"


@pytest.mark.asyncio
async def test_pipeline_shape(engine, backend, admin) -> None:
    """Test autocomplete clauses over every autocomplete path."""
    await engine.suggest("TEST", "orders", admin, limit=3)

    (pipeline,) = backend.pipelines_for("orders")
    search = pipeline[0]["$search"]
    assert search["index"] == "orders_search"
    paths = [c["autocomplete"]["path"] for c in search["compound"]["should"]]
    assert paths == ["order_number_autocomplete", "hawb_numbers_autocomplete"]
    assert pipeline[1] == {"$limit": 3}
    assert pipeline[2]["$project"]["score"] == {"$meta": "searchScore"}


@pytest.mark.asyncio
async def test_single_autocomplete_field_is_not_wrapped(engine, backend, admin) -> None:
    """Test that a lone autocomplete clause is sent as-is."""
    await engine.suggest("POD", "pods", admin)

    (pipeline,) = backend.pipelines_for("pods")
    assert pipeline[0]["$search"]["autocomplete"]["path"] == "pod_number_autocomplete"


@pytest.mark.asyncio
async def test_limit_is_capped(engine, backend, admin) -> None:
    """Test that the requested limit never exceeds the configured maximum."""
    await engine.suggest("TEST", "orders", admin, limit=500)

    (pipeline,) = backend.pipelines_for("orders")
    assert pipeline[1] == {"$limit": 10}


@pytest.mark.asyncio
async def test_short_query_returns_empty(engine, backend, admin) -> None:
    """Test that queries under the minimum length do not search."""
    response = await engine.suggest(" O ", "orders", admin)

    assert response.suggestions == []
    assert response.count == 0
    assert response.query == "O"
    assert backend.calls == []


@pytest.mark.asyncio
async def test_min_chars_override(engine, admin) -> None:
    """Test a per-request minimum length."""
    response = await engine.suggest("TEST", "orders", admin, min_chars=5)

    assert response.suggestions == []


@pytest.mark.asyncio
async def test_unknown_collection(engine, admin) -> None:
    """Test that an unregistered collection is rejected."""
    with pytest.raises(SearchValidationError):
        await engine.suggest("TEST", "shipments", admin)


@pytest.mark.asyncio
async def test_forbidden_collection_returns_empty(engine, backend, billing_user) -> None:
    """Test that inaccessible collections yield no suggestions."""
    response = await engine.suggest("POD", "pods", billing_user)

    assert response.suggestions == []
    assert backend.calls == []


@pytest.mark.asyncio
async def test_driver_suggestions_are_scoped(engine, backend, driver) -> None:
    """Test that a driver only sees their own orders."""
    response = await engine.suggest("ORD", "orders", driver)

    assert sorted(s.text for s in response.suggestions) == ["ORD-2026-0043", "ORD-TEST-001"]
    (pipeline,) = backend.pipelines_for("orders")
    assert "filter" in pipeline[0]["$search"]["compound"]


@pytest.mark.asyncio
async def test_unlinked_driver_gets_nothing(engine, backend, unlinked_driver) -> None:
    """Test that a driver without a linked record is never queried for."""
    response = await engine.suggest("ORD", "orders", unlinked_driver)

    assert response.suggestions == []
    assert backend.calls == []


@pytest.mark.asyncio
async def test_results_are_cached(engine, backend, cache, admin) -> None:
    """Test cache store on miss and reuse on hit."""
    first = await engine.suggest("TEST-0", "orders", admin)
    second = await engine.suggest("TEST-0", "orders", admin)

    assert len(backend.calls) == 1
    assert len(cache.store) == 1
    assert list(cache.ttls.values()) == [300]
    assert second.suggestions == first.suggestions
    (key,) = cache.store
    assert key.startswith("autocomplete:orders:admin:")


@pytest.mark.asyncio
async def test_cache_is_partitioned_by_scope(engine, backend, cache) -> None:
    """Test that two drivers never share cached suggestions."""
    from logistics_search.database.models import CallerContext, Role

    from conftest import DRIVER_ID, OTHER_DRIVER_ID

    mine = await engine.suggest(
        "ORD", "orders", CallerContext(role=Role.DRIVER, driver_id=str(DRIVER_ID))
    )
    theirs = await engine.suggest(
        "ORD", "orders", CallerContext(role=Role.DRIVER, driver_id=str(OTHER_DRIVER_ID))
    )

    assert len(cache.store) == 2
    assert len(backend.calls) == 2
    assert [s.text for s in theirs.suggestions] == ["ORD-2026-0042"]
    assert "ORD-2026-0042" not in [s.text for s in mine.suggestions]


@pytest.mark.asyncio
async def test_cache_disabled(backend, cache, admin) -> None:
    """Test that the cache is bypassed when disabled."""
    engine = AutocompleteEngine(backend, cache=cache, settings=Settings(enable_search_cache=False))

    await engine.suggest("TEST-0", "orders", admin)
    await engine.suggest("TEST-0", "orders", admin)

    assert cache.store == {}
    assert len(backend.calls) == 2


@pytest.mark.asyncio
async def test_failing_cache_does_not_fail_request(backend, settings, admin) -> None:
    """Test that cache errors read as a miss."""
    broken = AsyncMock()
    broken.get.side_effect = RuntimeError("cache down")
    broken.set.side_effect = RuntimeError("cache down")
    engine = AutocompleteEngine(backend, cache=broken, settings=settings)

    response = await engine.suggest("TEST-0", "orders", admin)

    assert response.count == 1


@pytest.mark.asyncio
async def test_backend_failure_returns_empty(engine, backend, cache, admin) -> None:
    """Test that a failed search degrades to no suggestions and is not cached."""
    backend.fail_on.add("orders")

    response = await engine.suggest("TEST", "orders", admin)

    assert response.success is True
    assert response.suggestions == []
    assert cache.store == {}
