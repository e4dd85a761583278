"""
Text utilities for handling Spanish text with accents.

Used for header labels, product name matching and free-text search.
"""

import re
import unicodedata
from typing import Any, Optional

_WHITESPACE = re.compile(r"\s+")


def normalize_header_label(value: Any) -> str:
    """
    Clean a header cell for display.

    - None → ""
    - Newlines and runs of whitespace collapse to one space
    - "  Precio\\nFinal " → "Precio Final"
    """
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


def header_key(value: Any) -> str:
    """Lower-cased header label used for comparisons."""
    return normalize_header_label(value).lower()


def strip_accents(text: str) -> str:
    """
    Remove accent marks.

    "Decoración García" → "Decoracion Garcia"
    """
    # NFD separates base chars from combining accents (category 'Mn')
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def normalize_search_text(value: Any) -> str:
    """
    Normalize any value for accent- and case-insensitive search.

    "  Tornillo CABEZA Allén " → "tornillo cabeza allen"
    """
    if value is None:
        return ""
    return strip_accents(_WHITESPACE.sub(" ", str(value)).strip()).lower()


def name_key(name: Optional[str]) -> Optional[str]:
    """
    Key used for exact case-insensitive product name matching.

    Only trims and case-folds; accents and inner spacing are significant.
    """
    if name is None:
        return None
    key = name.strip().casefold()
    return key or None


def clean_text(value: Any, max_length: int = 500) -> Optional[str]:
    """
    Clean a text cell for storage (preserves accents).

    - Strips whitespace
    - Truncates to max length
    - Returns None for empty/whitespace-only strings
    """
    if value is None:
        return None

    text = str(value).strip()

    if not text:
        return None

    if len(text) > max_length:
        text = text[:max_length]

    return text


def matches_search(search: Optional[str], *values: Any) -> bool:
    """True when search is empty or contained in any of the values."""
    needle = normalize_search_text(search)
    if not needle:
        return True
    return any(needle in normalize_search_text(v) for v in values)
