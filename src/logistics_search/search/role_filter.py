"""Row-level visibility rules per caller role.

Two tables drive everything here:

- ``SEARCHABLE_COLLECTIONS``: which collections a role may search at all.
- ``ROW_FILTERS``: for (role, collection), a function producing the mandatory
  ``filter`` clauses every query against that collection must carry.

Pairs missing from ``ROW_FILTERS`` have no row restriction. Scoping data
comes only from the ``CallerContext``; nothing here touches storage.
"""

from collections.abc import Callable

from bson import ObjectId

from logistics_search.database.models import CallerContext, Role
from logistics_search.search.query_builder import CompoundClause, EqualsClause, QueryClause

SEARCHABLE_COLLECTIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(
        {"orders", "accounts", "fleets", "drivers", "billings", "invoices", "pods"}
    ),
    Role.DISPATCHER: frozenset({"orders", "drivers", "fleets", "pods"}),
    Role.BILLING: frozenset({"billings", "invoices", "orders", "accounts"}),
    Role.DRIVER: frozenset({"orders", "pods", "drivers"}),
    Role.FLEET_MANAGER: frozenset({"fleets", "drivers", "orders"}),
}

# Collections a driver sees only through their linked driver record
DRIVER_SCOPED_COLLECTIONS = frozenset({"orders", "pods", "drivers"})


def entity_id(value: str | None) -> ObjectId | str | None:
    """Stored references are ObjectIds; send 24-hex ids in that form."""
    if value is not None and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _dispatcher_orders(caller: CallerContext) -> list[QueryClause]:
    # Assigned to this dispatcher, or not assigned to anyone
    return [
        CompoundClause(
            should=(
                EqualsClause("assigned_dispatcher_id", entity_id(caller.user_id)),
                EqualsClause("assigned_dispatcher_id", None),
            )
        )
    ]


def _driver_owned(caller: CallerContext) -> list[QueryClause]:
    return [EqualsClause("driver_id", entity_id(caller.driver_id))]


def _driver_own_record(caller: CallerContext) -> list[QueryClause]:
    return [EqualsClause("_id", entity_id(caller.driver_id))]


ROW_FILTERS: dict[tuple[Role, str], Callable[[CallerContext], list[QueryClause]]] = {
    (Role.DISPATCHER, "orders"): _dispatcher_orders,
    (Role.DRIVER, "orders"): _driver_owned,
    (Role.DRIVER, "pods"): _driver_owned,
    (Role.DRIVER, "drivers"): _driver_own_record,
}


class RoleFilter:
    """Applies the role tables to a caller.

    Usage:
        role_filter = RoleFilter()
        if role_filter.can_access(caller, "orders") and not role_filter.denies_all(caller, "orders"):
            clauses = role_filter.filters_for(caller, "orders")
    """

    def can_access(self, caller: CallerContext, collection: str) -> bool:
        """Whether the caller's role may search ``collection`` at all."""
        return collection in SEARCHABLE_COLLECTIONS.get(caller.role, frozenset())

    def denies_all(self, caller: CallerContext, collection: str) -> bool:
        """True when no record of ``collection`` can be visible to the caller.

        A driver account without a linked driver record sees nothing in the
        driver-scoped collections.
        """
        return (
            caller.role is Role.DRIVER
            and not caller.driver_id
            and collection in DRIVER_SCOPED_COLLECTIONS
        )

    def filters_for(self, caller: CallerContext, collection: str) -> list[QueryClause]:
        """Mandatory filter clauses for queries against ``collection``."""
        if self.denies_all(caller, collection):
            return []
        build = ROW_FILTERS.get((caller.role, collection))
        return build(caller) if build else []

    def scope_key(self, caller: CallerContext) -> str:
        """Identity that determines which rows the caller sees."""
        if caller.role is Role.DISPATCHER:
            return f"dispatcher:{caller.user_id or ''}"
        if caller.role is Role.DRIVER:
            return f"driver:{caller.driver_id or ''}"
        return caller.role.value
