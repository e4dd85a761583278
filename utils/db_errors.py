"""
Helpers for reading Postgres errors surfaced by PostgREST.

RPC functions in migrations/001_price_catalogs.sql raise:
    P0002  target row not found (hint: external / internal / equivalence)
    23505  unique violation or product already linked
Other 23xxx codes are constraint violations the services never expect.
"""

from typing import Optional

from postgrest.exceptions import APIError

NOT_FOUND = "P0002"
UNIQUE_VIOLATION = "23505"
INTEGRITY_CLASS = "23"


def pg_error_code(error: Exception) -> Optional[str]:
    """SQLSTATE of a PostgREST error, if there is one."""
    if isinstance(error, APIError):
        return error.code
    return None


def pg_error_hint(error: Exception) -> Optional[str]:
    if isinstance(error, APIError):
        return error.hint
    return None


def is_not_found(error: Exception) -> bool:
    return pg_error_code(error) == NOT_FOUND


def is_unique_violation(error: Exception) -> bool:
    return pg_error_code(error) == UNIQUE_VIOLATION


def is_integrity_violation(error: Exception) -> bool:
    """Any integrity constraint class error (unique, FK, check, not null)."""
    code = pg_error_code(error)
    return bool(code) and code.startswith(INTEGRITY_CLASS)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ilike() compares literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
