"""Registry of searchable collections.

Each collection has an Atlas Search index, plain-text searchable fields, and
autocomplete-indexed counterparts for some of them. The registry is built
once at import and never mutated.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from logistics_search.search.errors import SearchValidationError


@dataclass(frozen=True)
class CollectionDescriptor:
    """A searchable collection and how to query and format it."""

    name: str
    index_name: str
    searchable_fields: tuple[str, ...]
    autocomplete_fields: Mapping[str, str]
    result_fields: tuple[str, ...]
    date_field: str = "created_at"
    status_field: str = "status"
    filter_fields: tuple[str, ...] = field(default=())

    @property
    def primary_autocomplete_field(self) -> str | None:
        """Display field whose value is used as the suggestion text."""
        return next(iter(self.autocomplete_fields), None)

    @property
    def text_only_fields(self) -> tuple[str, ...]:
        """Searchable fields without an autocomplete counterpart."""
        return tuple(f for f in self.searchable_fields if f not in self.autocomplete_fields)

    @property
    def queryable_fields(self) -> frozenset[str]:
        return frozenset(self.searchable_fields) | frozenset(self.filter_fields)

    def format_item(self, document: dict[str, Any]) -> dict[str, Any]:
        """Shape a raw hit into a result item with score and highlights."""
        item: dict[str, Any] = {"id": str(document.get("_id", ""))}
        for name in self.result_fields:
            item[name] = document.get(name)
        item["score"] = max(float(document.get("score") or 0.0), 0.0)
        item["highlights"] = extract_highlights(document.get("highlights"))
        return item


def extract_highlights(highlights: list[dict[str, Any]] | None) -> dict[str, str]:
    """Join each highlighted path's text spans into one snippet."""
    snippets: dict[str, str] = {}
    for highlight in highlights or []:
        path = highlight.get("path")
        texts = highlight.get("texts")
        if not path or texts is None:
            continue
        snippets[path] = " ".join(t.get("value", "") for t in texts)
    return snippets


def _autocomplete(*fields: str) -> Mapping[str, str]:
    return MappingProxyType({f: f"{f}_autocomplete" for f in fields})


COLLECTIONS: tuple[CollectionDescriptor, ...] = (
    CollectionDescriptor(
        name="orders",
        index_name="orders_search",
        searchable_fields=("order_number", "hawb_numbers", "status"),
        autocomplete_fields=_autocomplete("order_number", "hawb_numbers"),
        result_fields=(
            "order_number",
            "hawb_numbers",
            "status",
            "origin",
            "destination",
            "pickup_date",
            "delivery_date",
            "estimated_delivery",
            "created_at",
        ),
        filter_fields=(
            "created_at",
            "pickup_date",
            "delivery_date",
            "total_weight",
            "total_value",
            "driver_id",
            "account_id",
        ),
    ),
    CollectionDescriptor(
        name="accounts",
        index_name="accounts_search",
        searchable_fields=("account_name", "company_name", "account_number"),
        autocomplete_fields=_autocomplete("account_name", "company_name"),
        result_fields=(
            "account_name",
            "account_number",
            "company_name",
            "contact_person",
            "email",
            "phone",
            "account_type",
            "status",
        ),
        filter_fields=("status", "account_type", "credit_limit", "current_balance", "created_at"),
    ),
    CollectionDescriptor(
        name="fleets",
        index_name="fleets_search",
        searchable_fields=("vehicle_name", "vin", "license_plate", "make", "model"),
        autocomplete_fields=_autocomplete("vehicle_name", "vin", "license_plate"),
        result_fields=(
            "vehicle_name",
            "vehicle_type",
            "vin",
            "license_plate",
            "make",
            "model",
            "year",
            "status",
        ),
        filter_fields=("status", "vehicle_type", "year", "fuel_type", "odometer", "created_at"),
    ),
    CollectionDescriptor(
        name="drivers",
        index_name="drivers_search",
        searchable_fields=("full_name", "license_number"),
        autocomplete_fields=_autocomplete("full_name"),
        result_fields=(
            "driver_id",
            "full_name",
            "email",
            "phone",
            "license_number",
            "license_state",
            "license_expiry",
            "status",
        ),
        filter_fields=("status", "license_state", "license_expiry", "hire_date", "created_at"),
    ),
    CollectionDescriptor(
        name="billings",
        index_name="billings_search",
        searchable_fields=("billing_number", "status"),
        autocomplete_fields=_autocomplete("billing_number"),
        result_fields=(
            "billing_number",
            "amount",
            "tax_amount",
            "total_amount",
            "status",
            "billing_date",
            "due_date",
        ),
        date_field="billing_date",
        filter_fields=("billing_date", "due_date", "payment_date", "amount", "total_amount"),
    ),
    CollectionDescriptor(
        name="invoices",
        index_name="invoices_search",
        searchable_fields=("invoice_number", "status"),
        autocomplete_fields=_autocomplete("invoice_number"),
        result_fields=(
            "invoice_number",
            "subtotal",
            "tax_amount",
            "total_amount",
            "status",
            "invoice_date",
            "due_date",
        ),
        date_field="invoice_date",
        filter_fields=("invoice_date", "due_date", "payment_date", "total_amount"),
    ),
    CollectionDescriptor(
        name="pods",
        index_name="pods_search",
        searchable_fields=("pod_number",),
        autocomplete_fields=_autocomplete("pod_number"),
        result_fields=(
            "pod_number",
            "delivery_date",
            "recipient_name",
            "delivery_status",
            "location",
        ),
        date_field="delivery_date",
        status_field="delivery_status",
        filter_fields=("delivery_status", "delivery_date", "recipient_name", "driver_id"),
    ),
)


class CollectionRegistry:
    """Name-keyed, ordered view over the collection descriptors."""

    def __init__(self, descriptors: tuple[CollectionDescriptor, ...] = COLLECTIONS):
        self._by_name = {d.name: d for d in descriptors}

    def __iter__(self) -> Iterator[CollectionDescriptor]:
        return iter(self._by_name.values())

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    @property
    def names(self) -> list[str]:
        return list(self._by_name)

    def get(self, name: str) -> CollectionDescriptor:
        """Look up a collection, raising a validation error for unknown names."""
        try:
            return self._by_name[name]
        except KeyError:
            raise SearchValidationError(
                f"collection must be one of: {', '.join(self._by_name)}"
            ) from None


registry = CollectionRegistry()
