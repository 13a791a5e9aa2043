"""Shared fixtures: an in-memory Atlas Search stand-in and seeded collections.

``FakeAtlasBackend`` evaluates the subset of aggregation stages and Atlas
Search operators the engine emits, closely enough to check scoping,
pagination and merging without a cluster.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from bson import ObjectId

from logistics_search.config import Settings
from logistics_search.database.models import CallerContext, Role
from logistics_search.search.errors import SearchExecutionError
from logistics_search.search.fuzzy import levenshtein_distance

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

DRIVER_ID = ObjectId("64b7f0c2a1b2c3d4e5f60001")
OTHER_DRIVER_ID = ObjectId("64b7f0c2a1b2c3d4e5f60002")
DISPATCHER_ID = ObjectId("64b7f0c2a1b2c3d4e5f60003")
OTHER_DISPATCHER_ID = ObjectId("64b7f0c2a1b2c3d4e5f60004")

_TOKEN = re.compile(r"[a-z0-9]+")


def _tokens(value: str) -> list[str]:
    return _TOKEN.findall(value.lower())


def _values(doc: dict[str, Any], path: str) -> list[str]:
    value = doc.get(path)
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def _fuzzy_equal(a: str, b: str, fuzzy: dict[str, Any] | None) -> bool:
    if a == b:
        return True
    if not fuzzy:
        return False
    prefix = fuzzy.get("prefixLength", 0)
    if a[:prefix] != b[:prefix]:
        return False
    return levenshtein_distance(a, b) <= fuzzy.get("maxEdits", 2)


class FakeAtlasBackend:
    """Executes engine pipelines against lists of documents."""

    def __init__(self, data: dict[str, list[dict[str, Any]]] | None = None):
        self.data = data or {}
        self.calls: list[tuple[str, list[dict[str, Any]]]] = []
        self.fail_on: set[str] = set()

    async def aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        self.calls.append((collection, pipeline))
        if collection in self.fail_on:
            raise SearchExecutionError(collection, "simulated outage")

        docs = [dict(d) for d in self.data.get(collection, [])]
        return self._run(docs, pipeline)

    def pipelines_for(self, collection: str) -> list[list[dict[str, Any]]]:
        return [p for c, p in self.calls if c == collection]

    # Pipeline stages

    def _run(self, docs: list[dict[str, Any]], pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for stage in pipeline:
            (name, spec), = stage.items()
            if name == "$search":
                docs = self._search(docs, spec)
            elif name == "$searchMeta":
                return [self._search_meta(docs, spec)]
            elif name == "$facet":
                docs = [{key: self._run(list(docs), sub) for key, sub in spec.items()}]
            elif name == "$skip":
                docs = docs[spec:]
            elif name == "$limit":
                docs = docs[:spec]
            elif name == "$count":
                docs = [{spec: len(docs)}] if docs else []
            elif name == "$addFields":
                docs = [self._add_fields(d, spec) for d in docs]
            elif name == "$project":
                docs = [self._project(d, spec) for d in docs]
            else:
                raise AssertionError(f"unsupported stage {name}")
        return docs

    def _search(self, docs: list[dict[str, Any]], spec: dict[str, Any]) -> list[dict[str, Any]]:
        operator = {k: v for k, v in spec.items() if k not in ("index", "highlight")}
        highlight_paths = spec.get("highlight", {}).get("path", [])
        hits = []
        for doc in docs:
            matched, score = self._match(doc, operator)
            if not matched:
                continue
            doc["__score"] = score
            doc["__highlights"] = self._highlights(doc, operator, highlight_paths)
            hits.append(doc)
        hits.sort(key=lambda d: -d["__score"])
        return hits

    def _search_meta(self, docs: list[dict[str, Any]], spec: dict[str, Any]) -> dict[str, Any]:
        facet = spec["facet"]
        matched = [d for d in docs if self._match(d, facet["operator"])[0]]
        result: dict[str, Any] = {}
        for name, definition in facet["facets"].items():
            if definition["type"] == "string":
                counts: dict[Any, int] = {}
                for doc in matched:
                    value = doc.get(definition["path"])
                    if value is not None:
                        counts[value] = counts.get(value, 0) + 1
                buckets = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
                buckets = buckets[: definition["numBuckets"]]
            else:
                bounds = definition["boundaries"]
                counts = {}
                for doc in matched:
                    value = doc.get(definition["path"])
                    key = definition.get("default")
                    for lower, upper in zip(bounds, bounds[1:]):
                        if value is not None and lower <= value < upper:
                            key = lower
                            break
                    if key is not None:
                        counts[key] = counts.get(key, 0) + 1
                buckets = [(b, counts[b]) for b in bounds[:-1] if b in counts]
                if definition.get("default") in counts:
                    buckets.append((definition["default"], counts[definition["default"]]))
            result[name] = {"buckets": [{"_id": v, "count": c} for v, c in buckets]}
        return {"count": {"lowerBound": len(matched)}, "facet": result}

    @staticmethod
    def _add_fields(doc: dict[str, Any], spec: dict[str, Any]) -> dict[str, Any]:
        for field, expr in spec.items():
            meta = expr.get("$meta") if isinstance(expr, dict) else None
            if meta == "searchScore":
                doc[field] = doc.get("__score", 0.0)
            elif meta == "searchHighlights":
                doc[field] = doc.get("__highlights", [])
            else:
                doc[field] = expr
        return doc

    @staticmethod
    def _project(doc: dict[str, Any], spec: dict[str, Any]) -> dict[str, Any]:
        projected: dict[str, Any] = {}
        for field, include in spec.items():
            if isinstance(include, dict) and include.get("$meta") == "searchScore":
                projected[field] = doc.get("__score", 0.0)
            elif include == 1 and field in doc:
                projected[field] = doc[field]
        return projected

    # Operators

    def _match(self, doc: dict[str, Any], operator: dict[str, Any]) -> tuple[bool, float]:
        (kind, body), = operator.items()
        boost = body.get("score", {}).get("boost", {}).get("value", 1.0) if isinstance(body, dict) else 1.0

        if kind == "compound":
            return self._compound(doc, body)
        if kind == "text":
            paths = body["path"] if isinstance(body["path"], list) else [body["path"]]
            ok = any(self._text_match(doc, p, body["query"], body.get("fuzzy")) for p in paths)
            return ok, boost if ok else 0.0
        if kind == "autocomplete":
            field = body["path"].removesuffix("_autocomplete")
            ok = self._prefix_match(doc, field, body["query"], body.get("fuzzy"))
            return ok, boost if ok else 0.0
        if kind == "equals":
            return doc.get(body["path"]) == body["value"], 0.0
        if kind == "in":
            value = doc.get(body["path"])
            values = value if isinstance(value, list) else [value]
            return any(v in body["value"] for v in values), 0.0
        if kind == "range":
            value = doc.get(body["path"])
            if value is None:
                return False, 0.0
            if "gte" in body and value < body["gte"]:
                return False, 0.0
            if "lte" in body and value > body["lte"]:
                return False, 0.0
            return True, 0.0
        if kind == "wildcard":
            return True, 1.0
        raise AssertionError(f"unsupported operator {kind}")

    def _compound(self, doc: dict[str, Any], body: dict[str, Any]) -> tuple[bool, float]:
        score = 0.0
        for clause in body.get("must", []):
            ok, s = self._match(doc, clause)
            if not ok:
                return False, 0.0
            score += s
        for clause in body.get("filter", []):
            if not self._match(doc, clause)[0]:
                return False, 0.0
        for clause in body.get("mustNot", []):
            if self._match(doc, clause)[0]:
                return False, 0.0

        should = body.get("should", [])
        only_should = should and not any(k in body for k in ("must", "filter", "mustNot"))
        required = body.get("minimumShouldMatch", 1 if only_should else 0)
        matched = 0
        for clause in should:
            ok, s = self._match(doc, clause)
            if ok:
                matched += 1
                score += s
        if matched < required:
            return False, 0.0
        return True, score

    @staticmethod
    def _text_match(doc: dict[str, Any], path: str, query: str, fuzzy: dict[str, Any] | None) -> bool:
        query_tokens = _tokens(query)
        for value in _values(doc, path):
            if query.lower() in value.lower():
                return True
            doc_tokens = _tokens(value)
            if any(_fuzzy_equal(q, t, fuzzy) for q in query_tokens for t in doc_tokens):
                return True
        return False

    @staticmethod
    def _prefix_match(doc: dict[str, Any], field: str, query: str, fuzzy: dict[str, Any] | None) -> bool:
        needle = query.lower()
        for value in _values(doc, field):
            lowered = value.lower()
            if lowered.startswith(needle) or needle in lowered:
                return True
            if fuzzy and _fuzzy_equal(needle, lowered[: len(needle)], fuzzy):
                return True
        return False

    def _highlights(
        self, doc: dict[str, Any], operator: dict[str, Any], paths: list[str]
    ) -> list[dict[str, Any]]:
        queries = set(self._queries(operator))
        highlights = []
        for path in paths:
            for value in _values(doc, path):
                if any(q.lower() in value.lower() for q in queries):
                    highlights.append(
                        {"path": path, "texts": [{"value": value, "type": "hit"}], "score": 1.0}
                    )
                    break
        return highlights

    def _queries(self, operator: dict[str, Any]):
        (kind, body), = operator.items()
        if kind == "compound":
            for key in ("must", "should", "filter", "mustNot"):
                for clause in body.get(key, []):
                    yield from self._queries(clause)
        elif kind in ("text", "autocomplete"):
            yield body["query"]


class FakeCache:
    """Dict-backed cache with the CacheClient get/set interface."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any | None:
        value = self.store.get(key)
        return None if value is None else json.loads(value)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        self.store[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl
        return True


def seed_data() -> dict[str, list[dict[str, Any]]]:
    return {
        "orders": [
            {
                "_id": ObjectId(),
                "order_number": "ORD-TEST-001",
                "hawb_numbers": ["HAWB-7781"],
                "status": "pending",
                "driver_id": DRIVER_ID,
                "assigned_dispatcher_id": DISPATCHER_ID,
                "created_at": NOW - timedelta(days=3),
            },
            {
                "_id": ObjectId(),
                "order_number": "ORD-2026-0042",
                "hawb_numbers": ["HAWB-9900", "HAWB-9901"],
                "status": "in_transit",
                "driver_id": OTHER_DRIVER_ID,
                "assigned_dispatcher_id": OTHER_DISPATCHER_ID,
                "created_at": NOW - timedelta(days=40),
            },
            {
                "_id": ObjectId(),
                "order_number": "ORD-2026-0043",
                "hawb_numbers": [],
                "status": "delivered",
                "driver_id": DRIVER_ID,
                "assigned_dispatcher_id": None,
                "created_at": NOW - timedelta(days=200),
            },
        ],
        "accounts": [
            {
                "_id": ObjectId(),
                "account_name": "Test Logistics Company",
                "company_name": "Northwind Freight",
                "account_number": "ACC-5501",
                "account_type": "enterprise",
                "status": "active",
                "created_at": NOW - timedelta(days=10),
            },
            {
                "_id": ObjectId(),
                "account_name": "Harbor Supply",
                "company_name": "Harbor Supply Inc",
                "account_number": "ACC-5502",
                "account_type": "standard",
                "status": "active",
                "created_at": NOW - timedelta(days=90),
            },
        ],
        "fleets": [
            {
                "_id": ObjectId(),
                "vehicle_name": "Truck 12",
                "vehicle_type": "box_truck",
                "vin": "1FTFW1ET5DFC10312",
                "license_plate": "TST-4411",
                "make": "Ford",
                "model": "F-650",
                "year": 2020,
                "status": "active",
                "created_at": NOW - timedelta(days=30),
            },
        ],
        "drivers": [
            {
                "_id": DRIVER_ID,
                "driver_id": "DRV-0001",
                "full_name": "Jordan Smith",
                "license_number": "TEST-LIC-9",
                "status": "active",
                "created_at": NOW - timedelta(days=400),
            },
            {
                "_id": OTHER_DRIVER_ID,
                "driver_id": "DRV-0002",
                "full_name": "Casey Smyth",
                "license_number": "LIC-2231",
                "status": "inactive",
                "created_at": NOW - timedelta(days=20),
            },
        ],
        "billings": [
            {
                "_id": ObjectId(),
                "billing_number": "BILL-TEST-77",
                "status": "draft",
                "billing_date": NOW - timedelta(days=5),
            },
        ],
        "invoices": [
            {
                "_id": ObjectId(),
                "invoice_number": "INV-TEST-3",
                "status": "sent",
                "invoice_date": NOW - timedelta(days=15),
            },
        ],
        "pods": [
            {
                "_id": ObjectId(),
                "pod_number": "POD-TEST-12",
                "delivery_status": "completed",
                "driver_id": DRIVER_ID,
                "delivery_date": NOW - timedelta(days=2),
            },
            {
                "_id": ObjectId(),
                "pod_number": "POD-TEST-13",
                "delivery_status": "pending",
                "driver_id": OTHER_DRIVER_ID,
                "delivery_date": NOW - timedelta(days=1),
            },
        ],
    }


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def backend() -> FakeAtlasBackend:
    return FakeAtlasBackend(seed_data())


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def admin() -> CallerContext:
    return CallerContext(role=Role.ADMIN, user_id=str(ObjectId()))


@pytest.fixture
def dispatcher() -> CallerContext:
    return CallerContext(role=Role.DISPATCHER, user_id=str(DISPATCHER_ID))


@pytest.fixture
def billing_user() -> CallerContext:
    return CallerContext(role=Role.BILLING, user_id=str(ObjectId()))


@pytest.fixture
def driver() -> CallerContext:
    return CallerContext(role=Role.DRIVER, user_id=str(ObjectId()), driver_id=str(DRIVER_ID))


@pytest.fixture
def unlinked_driver() -> CallerContext:
    return CallerContext(role=Role.DRIVER, user_id=str(ObjectId()))


@pytest.fixture
def fleet_manager() -> CallerContext:
    return CallerContext(role=Role.FLEET_MANAGER, user_id=str(ObjectId()))
