"""
Lock-order checks for the SQL functions in the catalog migration.

Every function that locks both product tables must lock the external row
before the internal one, otherwise two concurrent calls can deadlock.

Run: pytest tests/unit/test_migration_locks.py -v
"""

import re
from pathlib import Path

import pytest

MIGRATION = Path(__file__).resolve().parents[2] / "migrations" / "001_price_catalogs.sql"

FUNCTION_RE = re.compile(r"create or replace function (\w+)\(", re.IGNORECASE)
LOCK_RE = re.compile(r"from (external_products|internal_products)\b[^;]*\bfor update", re.IGNORECASE)


def _functions() -> dict[str, str]:
    sql = MIGRATION.read_text(encoding="utf-8")
    starts = list(FUNCTION_RE.finditer(sql))
    bodies = {}
    for i, match in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(sql)
        bodies[match.group(1)] = sql[match.start():end]
    return bodies


def _lock_order(body: str) -> list[str]:
    return [m.group(1).lower() for m in LOCK_RE.finditer(body)]


class TestLockOrder:

    def test_delete_internal_locks_linked_external_first(self):
        # Act
        order = _lock_order(_functions()["delete_internal_product"])

        # Assert
        assert order == ["external_products", "internal_products"]

    def test_link_locks_external_first(self):
        assert _lock_order(_functions()["link_products"]) == ["external_products", "internal_products"]

    @pytest.mark.parametrize("name", sorted(_functions()))
    def test_external_never_locked_after_internal(self, name):
        order = _lock_order(_functions()[name])

        if "internal_products" in order and "external_products" in order:
            assert order.index("external_products") < order.index("internal_products")
