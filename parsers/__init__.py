"""
Spreadsheet parsing: reading, header detection and row normalization.
"""

from parsers.excel_parser import read_matrix
from parsers.header_mapper import detect_mapping, suggest_header_row
from parsers.row_normalizer import (
    normalize_rows,
    parse_price,
    cell_to_text,
    NormalizedRecord,
    NormalizeResult,
)

__all__ = [
    "read_matrix",
    "detect_mapping",
    "suggest_header_row",
    "normalize_rows",
    "parse_price",
    "cell_to_text",
    "NormalizedRecord",
    "NormalizeResult",
]
