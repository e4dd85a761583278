"""
Spreadsheet reader for price list uploads.

Reads the first sheet of an .xlsx/.xls/.csv file into a plain 2-D matrix
of raw cell values. Nothing here knows about headers: the header row is
chosen later (suggested by parsers.header_mapper, confirmed by the user).
"""

from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
import structlog

from exceptions import ImportUnreadableError

logger = structlog.get_logger(__name__)

CSV_SUFFIXES = {".csv", ".txt"}


def _clean_cell(value: Any) -> Any:
    """NaN/NaT from pandas become None; everything else is passed through."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def _trim_row(row: list[Any]) -> list[Any]:
    """Drop trailing empty cells so short rows stay short."""
    end = len(row)
    while end and row[end - 1] is None:
        end -= 1
    return row[:end]


def read_matrix(
    file: Union[str, Path, BytesIO],
    filename: Optional[str] = None,
    sheet_name: Union[int, str] = 0,
) -> list[list[Any]]:
    """
    Read a spreadsheet into a matrix of raw cells.

    Args:
        file: File path or file-like object
        filename: Original filename, used to detect CSV uploads
        sheet_name: Sheet to read for workbooks (default: first)

    Returns:
        List of rows, each a list of raw cell values (None for empty)

    Raises:
        ImportUnreadableError: If the file cannot be read or has no rows
    """
    name = filename or (str(file) if isinstance(file, (str, Path)) else "")
    is_csv = Path(name).suffix.lower() in CSV_SUFFIXES

    logger.info("reading_spreadsheet", filename=name or None, csv=is_csv)

    try:
        if is_csv:
            df = pd.read_csv(
                file,
                header=None,
                dtype=object,
                sep=None,
                engine="python",
                skip_blank_lines=False,
            )
        else:
            df = pd.read_excel(file, sheet_name=sheet_name, header=None, dtype=object)
    except Exception as e:
        logger.error("spreadsheet_read_failed", filename=name or None, error=str(e))
        raise ImportUnreadableError(
            "Failed to read spreadsheet",
            details={"original_error": str(e)}
        )

    matrix = [
        _trim_row([_clean_cell(v) for v in row])
        for row in df.itertuples(index=False, name=None)
    ]

    # Trailing blank rows carry no data
    while matrix and not matrix[-1]:
        matrix.pop()

    if not matrix:
        raise ImportUnreadableError("The spreadsheet has no rows")

    logger.info("spreadsheet_read", rows=len(matrix))

    return matrix
