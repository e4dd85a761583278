"""
Shared test fixtures.

The Supabase client is replaced by an in-memory fake that keeps real
state per table, enforces the unique / foreign key / cascade rules of
migrations/001_price_catalogs.sql and runs the same RPC functions.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

import copy
import re
import pytest
from unittest.mock import patch
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from postgrest.exceptions import APIError

# ===================
# SCHEMA RULES
# ===================

# table -> list of unique column groups; rows with a NULL in the group are exempt
UNIQUE_KEYS = {
    "external_products": [("code", "supplier")],
    "internal_products": [("code",)],
    "equivalences": [("external_id",), ("internal_id",)],
    "unmatched_external": [("product_id",)],
    "unmatched_internal": [("product_id",)],
    "column_mappings": [("supplier",)],
}

# child table -> (column, parent table); all cascade on delete
FOREIGN_KEYS = {
    "equivalences": [("external_id", "external_products"), ("internal_id", "internal_products")],
    "unmatched_external": [("product_id", "external_products")],
    "unmatched_internal": [("product_id", "internal_products")],
}

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def pg_error(code: str, message: str, hint: Optional[str] = None) -> APIError:
    return APIError({"message": message, "code": code, "hint": hint, "details": None})


def _like_to_regex(pattern: str) -> re.Pattern:
    """Translate an ILIKE pattern (backslash escapes) into a regex."""
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.IGNORECASE | re.DOTALL)


def _jsonable(value: Any) -> Any:
    """Mimic what PostgREST hands back for a stored value."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


# ===================
# FAKE SUPABASE CLIENT
# ===================

class FakeResponse:
    """Query response with .data and .count."""

    def __init__(self, data: Any = None, count: Optional[int] = None):
        self.data = data if data is not None else []
        self.count = count if count is not None else (len(self.data) if isinstance(self.data, list) else None)


class FakeQuery:
    """Chainable query builder over one in-memory table."""

    def __init__(self, client: "FakeSupabaseClient", table: str):
        self._client = client
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._filters: list[Callable[[dict], bool]] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None

    # --- operations ---

    def select(self, *args, **kwargs):
        self._op = "select"
        return self

    def insert(self, data):
        self._op = "insert"
        self._payload = data
        return self

    def upsert(self, data, on_conflict: Optional[str] = None, **kwargs):
        self._op = "upsert"
        self._payload = data
        self._on_conflict = on_conflict
        return self

    def update(self, data):
        self._op = "update"
        self._payload = data
        return self

    def delete(self):
        self._op = "delete"
        return self

    # --- filters ---

    def eq(self, column, value):
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda r: r.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda r: r.get(column) in values)
        return self

    def is_(self, column, value):
        if value in ("null", None):
            self._filters.append(lambda r: r.get(column) is None)
        else:
            self._filters.append(lambda r: r.get(column) is not None)
        return self

    def ilike(self, column, pattern):
        regex = _like_to_regex(pattern)
        self._filters.append(lambda r: r.get(column) is not None and bool(regex.match(str(r.get(column)))))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def range(self, start, end):
        return self

    # --- execution ---

    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self) -> FakeResponse:
        self._client._maybe_fail(self._table)

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            return FakeResponse([self._client._insert_row(self._table, row) for row in payload])

        if self._op == "upsert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            return FakeResponse([self._client._upsert_row(self._table, row, self._on_conflict) for row in payload])

        if self._op == "update":
            rows = [r for r in self._client.rows(self._table) if self._matches(r)]
            return FakeResponse([self._client._update_row(self._table, r["id"], self._payload) for r in rows])

        if self._op == "delete":
            rows = [r for r in self._client.rows(self._table) if self._matches(r)]
            for r in rows:
                self._client._delete_row(self._table, r["id"])
            return FakeResponse(rows)

        rows = [r for r in self._client.rows(self._table) if self._matches(r)]
        for column, desc in reversed(self._order):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            rows = present + missing
        if self._limit is not None:
            rows = rows[:self._limit]
        return FakeResponse(rows)


class FakeRpc:
    def __init__(self, client: "FakeSupabaseClient", name: str, params: dict):
        self._client = client
        self._name = name
        self._params = params

    def execute(self) -> FakeResponse:
        return FakeResponse(self._client._call(self._name, self._params))


class FakeSupabaseClient:
    """
    Stateful stand-in for supabase.Client.

    Usage:
        def test_something(fake_db):
            fake_db.seed("internal_products", {"name": "Cinta", ...})
            service = CatalogService(fake_db)

    Hooks:
        before_rpc[name] = callable(params) runs before an RPC body,
        to interleave a concurrent writer.
        fail_on[table_or_rpc] = exception raised by the next execute().
    """

    def __init__(self):
        self._tables: dict[str, dict[int, dict]] = {}
        self._sequences: dict[str, int] = {}
        self._clock = 0
        self.before_rpc: dict[str, Callable[[dict], None]] = {}
        self.fail_on: dict[str, Exception] = {}
        self.rpc_calls: list[tuple[str, dict]] = []

    # --- public helpers ---

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        return FakeRpc(self, name, params)

    def rows(self, table: str) -> list[dict]:
        """Copy of a table's rows in id order."""
        return [copy.deepcopy(r) for _, r in sorted(self._tables.get(table, {}).items())]

    def seed(self, table: str, row: dict) -> dict:
        """Insert a row directly, bypassing RPC functions."""
        return self._insert_row(table, row)

    def _maybe_fail(self, name: str) -> None:
        error = self.fail_on.pop(name, None)
        if error is not None:
            raise error

    # --- storage primitives ---

    def _now(self) -> str:
        self._clock += 1
        return (BASE_TIME + timedelta(seconds=self._clock)).isoformat()

    def _check_unique(self, table: str, row: dict, exclude_id: Optional[int] = None) -> None:
        for columns in UNIQUE_KEYS.get(table, []):
            values = tuple(row.get(c) for c in columns)
            if any(v is None for v in values):
                continue
            for other_id, other in self._tables.get(table, {}).items():
                if other_id == exclude_id:
                    continue
                if tuple(other.get(c) for c in columns) == values:
                    raise pg_error(
                        "23505",
                        f'duplicate key value violates unique constraint on {table} ({", ".join(columns)})'
                    )

    def _check_foreign_keys(self, table: str, row: dict) -> None:
        for column, parent in FOREIGN_KEYS.get(table, []):
            if row.get(column) not in self._tables.get(parent, {}):
                raise pg_error("23503", f"insert or update on {table} violates foreign key on {column}")

    def _defaults(self, table: str) -> dict:
        now = self._now()
        if table in ("external_products", "internal_products"):
            defaults = {"imported_at": now, "effective_date": date.today().isoformat()}
            if table == "external_products":
                defaults["company_type"] = "supplier"
            return defaults
        if table == "column_mappings":
            return {"header_row": 1, "updated_at": now}
        if table == "imports_log":
            return {"imported_at": now}
        return {"created_at": now}

    def _insert_row(self, table: str, row: dict) -> dict:
        stored = {**self._defaults(table), **{k: _jsonable(v) for k, v in row.items()}}
        self._check_unique(table, stored)
        self._check_foreign_keys(table, stored)

        self._sequences[table] = self._sequences.get(table, 0) + 1
        stored["id"] = self._sequences[table]
        self._tables.setdefault(table, {})[stored["id"]] = stored
        return copy.deepcopy(stored)

    def _update_row(self, table: str, row_id: int, changes: dict) -> dict:
        current = self._tables[table][row_id]
        merged = {**current, **{k: _jsonable(v) for k, v in changes.items()}}
        self._check_unique(table, merged, exclude_id=row_id)
        self._tables[table][row_id] = merged
        return copy.deepcopy(merged)

    def _upsert_row(self, table: str, row: dict, on_conflict: Optional[str]) -> dict:
        if on_conflict:
            keys = [c.strip() for c in on_conflict.split(",")]
            for row_id, existing in self._tables.get(table, {}).items():
                if all(existing.get(k) == row.get(k) for k in keys):
                    return self._update_row(table, row_id, row)
        return self._insert_row(table, row)

    def _delete_row(self, table: str, row_id: int) -> None:
        self._tables.get(table, {}).pop(row_id, None)
        # ON DELETE CASCADE
        for child, fks in FOREIGN_KEYS.items():
            for column, parent in fks:
                if parent != table:
                    continue
                for child_id, child_row in list(self._tables.get(child, {}).items()):
                    if child_row.get(column) == row_id:
                        self._delete_row(child, child_id)

    def _find(self, table: str, **where) -> Optional[dict]:
        for row in self._tables.get(table, {}).values():
            if all(row.get(k) == v for k, v in where.items()):
                return row
        return None

    def _add_marker(self, side: str, product_id: int, reason: str) -> None:
        table = f"unmatched_{side}"
        if self._find(table, product_id=product_id) is None:
            self._insert_row(table, {"product_id": product_id, "reason": reason})

    def _remove_marker(self, side: str, product_id: int) -> None:
        table = f"unmatched_{side}"
        marker = self._find(table, product_id=product_id)
        if marker is not None:
            self._delete_row(table, marker["id"])

    # --- RPC functions (mirror the SQL migration) ---

    def _call(self, name: str, params: dict) -> Any:
        self.rpc_calls.append((name, dict(params)))
        self._maybe_fail(name)

        hook = self.before_rpc.pop(name, None)
        if hook is not None:
            hook(params)

        snapshot = copy.deepcopy((self._tables, self._sequences))
        try:
            return getattr(self, f"_rpc_{name}")(params)
        except APIError:
            # Function bodies run in one transaction
            self._tables, self._sequences = snapshot
            raise

    def _rpc_insert_external_product(self, p: dict) -> dict:
        row = self._insert_row("external_products", {
            "name": p["p_name"],
            "code": p["p_code"],
            "final_price": p["p_final_price"],
            "company_type": p["p_company_type"],
            "effective_date": p["p_effective_date"],
            "supplier": p["p_supplier"],
        })
        self._insert_row("unmatched_external", {"product_id": row["id"], "reason": p.get("p_reason", "new")})
        return row

    def _rpc_insert_internal_product(self, p: dict) -> dict:
        row = self._insert_row("internal_products", {
            "name": p["p_name"],
            "code": p["p_code"],
            "final_price": p["p_final_price"],
            "effective_date": p["p_effective_date"],
        })
        self._insert_row("unmatched_internal", {"product_id": row["id"], "reason": p.get("p_reason", "new")})
        return row

    def _rpc_link_products(self, p: dict) -> dict:
        ext_id, int_id = p["p_external_id"], p["p_internal_id"]

        if ext_id not in self._tables.get("external_products", {}):
            raise pg_error("P0002", f"external product {ext_id} not found", "external")
        if int_id not in self._tables.get("internal_products", {}):
            raise pg_error("P0002", f"internal product {int_id} not found", "internal")
        if self._find("equivalences", external_id=ext_id):
            raise pg_error("23505", f"external product {ext_id} is already linked", "external_linked")
        if self._find("equivalences", internal_id=int_id):
            raise pg_error("23505", f"internal product {int_id} is already linked", "internal_linked")

        link = self._insert_row("equivalences", {
            "external_id": ext_id,
            "internal_id": int_id,
            "criterion": p["p_criterion"],
        })
        self._remove_marker("external", ext_id)
        self._remove_marker("internal", int_id)
        return link

    def _rpc_unlink_equivalence(self, p: dict) -> dict:
        link = self._tables.get("equivalences", {}).get(p["p_equivalence_id"])
        if link is None:
            raise pg_error("P0002", f"equivalence {p['p_equivalence_id']} not found", "equivalence")

        link = copy.deepcopy(link)
        self._delete_row("equivalences", link["id"])
        self._add_marker("external", link["external_id"], "unlinked")
        self._add_marker("internal", link["internal_id"], "unlinked")
        return link

    def _delete_product(self, side: str, product_id: int) -> dict:
        other = "internal" if side == "external" else "external"
        if product_id not in self._tables.get(f"{side}_products", {}):
            raise pg_error("P0002", f"{side} product {product_id} not found", side)

        link = self._find("equivalences", **{f"{side}_id": product_id})
        link = copy.deepcopy(link) if link else None
        if link is not None:
            self._delete_row("equivalences", link["id"])
            self._add_marker(other, link[f"{other}_id"], "counterpart_deleted")

        self._delete_row(f"{side}_products", product_id)

        return {
            "id": product_id,
            "equivalence_id": link["id"] if link else None,
            "released_id": link[f"{other}_id"] if link else None,
        }

    def _rpc_delete_external_product(self, p: dict) -> dict:
        return self._delete_product("external", p["p_id"])

    def _rpc_delete_internal_product(self, p: dict) -> dict:
        return self._delete_product("internal", p["p_id"])


# ===================
# FIXTURES
# ===================

@pytest.fixture
def fake_db() -> FakeSupabaseClient:
    """Fresh in-memory database per test."""
    return FakeSupabaseClient()


@pytest.fixture
def catalog_service(fake_db):
    from services.catalog_service import CatalogService
    return CatalogService(fake_db)


@pytest.fixture
def relation_service(fake_db, catalog_service):
    from services.relation_service import RelationService
    return RelationService(fake_db, catalog_service)


@pytest.fixture
def equivalence_service(fake_db, catalog_service, relation_service):
    from services.equivalence_service import EquivalenceService
    return EquivalenceService(fake_db, catalog_service, relation_service)


@pytest.fixture
def comparison_service(fake_db, catalog_service, relation_service):
    from services.comparison_service import ComparisonService
    return ComparisonService(fake_db, catalog_service, relation_service)


@pytest.fixture
def import_service(fake_db, catalog_service, equivalence_service):
    from services.import_service import ImportService
    return ImportService(fake_db, catalog_service, equivalence_service)


def assert_pools_consistent(db: FakeSupabaseClient) -> None:
    """A product is in its unmatched pool if and only if it has no equivalence."""
    links = db.rows("equivalences")
    for side in ("external", "internal"):
        linked = {l[f"{side}_id"] for l in links}
        unmatched = {m["product_id"] for m in db.rows(f"unmatched_{side}")}
        products = {p["id"] for p in db.rows(f"{side}_products")}
        assert linked.isdisjoint(unmatched), f"{side}: linked products still unmatched"
        assert linked | unmatched == products, f"{side}: products missing from both sets"


@pytest.fixture
def pools_consistent():
    """Invariant checker: call with the fake client after any write."""
    return assert_pools_consistent


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(catalog_service, relation_service, equivalence_service, comparison_service, import_service):
    """
    FastAPI test client wired to services over the in-memory database.

    Usage:
        def test_endpoint(test_client, fake_db):
            response = test_client.get("/api/products/external")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    from main import app

    with patch("routes.products.get_catalog_service", return_value=catalog_service), \
            patch("routes.products.get_equivalence_service", return_value=equivalence_service), \
            patch("routes.products.get_import_service", return_value=import_service), \
            patch("routes.equivalences.get_relation_service", return_value=relation_service), \
            patch("routes.equivalences.get_equivalence_service", return_value=equivalence_service), \
            patch("routes.comparisons.get_comparison_service", return_value=comparison_service), \
            patch("routes.imports.get_import_service", return_value=import_service):
        yield TestClient(app)
