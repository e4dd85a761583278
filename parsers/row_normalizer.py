"""
Row normalization for imported price lists.

Turns the raw cell matrix plus the chosen header row and column mapping
into candidate records with canonical fields. This is the only place
that looks up spreadsheet cells by header; everything downstream works
with NormalizedRecord.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import math
import re
from typing import Any, Optional, Sequence

import structlog

from exceptions import ImportUnreadableError, InvalidPriceError
from models.ingest import CanonicalField

logger = structlog.get_logger(__name__)

# Anything that is not a digit, separator or sign: "$", "ARS", "€", spaces
_PRICE_NOISE = re.compile(r"[^\d,.\-]")


@dataclass
class NormalizedRecord:
    """Candidate record extracted from one data row."""
    row_number: Optional[int]
    name: Optional[str] = None
    code: Optional[str] = None
    final_price: Optional[Decimal] = None
    raw_price: str = ""
    price_error: Optional[str] = None
    cells: dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return bool(self.name) and self.final_price is not None and self.price_error is None


@dataclass
class NormalizeResult:
    """Records extracted from a matrix."""
    header_row: int
    headers: list[str] = field(default_factory=list)
    records: list[NormalizedRecord] = field(default_factory=list)
    blank_rows: int = 0

    @property
    def invalid_records(self) -> list[NormalizedRecord]:
        return [r for r in self.records if not r.is_valid]


def cell_to_text(value: Any) -> str:
    """
    Stringify a raw cell.

    - None / NaN → ""
    - 1001.0 → "1001" (codes read as floats)
    - date/datetime → ISO text
    """
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_price(value: Any, row: Optional[int] = None) -> Decimal:
    """
    Parse a price cell into a non-negative Decimal.

    Text rules:
        - currency symbols and spaces are dropped ("$ 1.234,50")
        - with both "," and "." the last one is the decimal separator
        - a separator that repeats is a thousands separator ("1.234.567")
        - a single "," is a decimal comma ("55,5")

    Raises:
        InvalidPriceError: Empty, unparseable or negative value
    """
    if isinstance(value, bool):
        raise InvalidPriceError(value, row)

    if isinstance(value, (int, float, Decimal)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            raise InvalidPriceError(value, row)
        amount = Decimal(str(value))
    else:
        text = _PRICE_NOISE.sub("", str(value or ""))
        if not text or not any(c.isdigit() for c in text):
            raise InvalidPriceError(value, row)

        commas, dots = text.count(","), text.count(".")
        if commas and dots:
            if text.rfind(",") > text.rfind("."):
                text = text.replace(".", "").replace(",", ".")
            else:
                text = text.replace(",", "")
        elif commas > 1:
            text = text.replace(",", "")
        elif commas == 1:
            text = text.replace(",", ".")
        elif dots > 1:
            text = text.replace(".", "")

        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise InvalidPriceError(value, row)

    if amount < 0 or not amount.is_finite():
        raise InvalidPriceError(value, row)

    return amount


def _is_blank(row: Sequence[Any]) -> bool:
    return all(cell_to_text(cell) == "" for cell in row)


def normalize_rows(
    matrix: Sequence[Sequence[Any]],
    header_row_number: int,
    column_mapping: dict[str, CanonicalField],
) -> NormalizeResult:
    """
    Convert a raw cell matrix into normalized records.

    Args:
        matrix: 2-D list of raw cell values (first sheet, as read)
        header_row_number: 1-based index of the header row
        column_mapping: Raw header value -> canonical field

    Returns:
        NormalizeResult; records carry price_error instead of raising

    Raises:
        ImportUnreadableError: Empty matrix or header row out of range
    """
    if not matrix:
        raise ImportUnreadableError("The spreadsheet has no rows")

    if header_row_number < 1 or header_row_number > len(matrix):
        raise ImportUnreadableError(
            "Header row is outside the sheet",
            details={"header_row": header_row_number, "total_rows": len(matrix)}
        )

    headers = ["" if cell is None else str(cell) for cell in matrix[header_row_number - 1]]

    # First occurrence wins for duplicated raw headers
    columns: dict[CanonicalField, int] = {}
    for raw_header, canonical in column_mapping.items():
        canonical = CanonicalField(canonical)
        if raw_header in headers and canonical not in columns:
            columns[canonical] = headers.index(raw_header)

    result = NormalizeResult(header_row=header_row_number, headers=headers)

    for offset, row in enumerate(matrix[header_row_number:], start=header_row_number + 1):
        row = list(row or [])
        if _is_blank(row):
            result.blank_rows += 1
            continue

        def cell(canonical: CanonicalField) -> Any:
            index = columns.get(canonical)
            if index is None or index >= len(row):
                return ""
            return row[index]

        record = NormalizedRecord(
            row_number=offset,
            name=cell_to_text(cell(CanonicalField.NAME)) or None,
            code=cell_to_text(cell(CanonicalField.CODE)) or None,
        )
        for i, raw_header in enumerate(headers):
            if raw_header:
                record.cells.setdefault(raw_header, cell_to_text(row[i]) if i < len(row) else "")

        raw_price = cell(CanonicalField.PRICE)
        record.raw_price = cell_to_text(raw_price)
        if record.raw_price:
            try:
                record.final_price = parse_price(raw_price, row=offset)
            except InvalidPriceError as e:
                record.price_error = e.message

        result.records.append(record)

    logger.info(
        "rows_normalized",
        header_row=header_row_number,
        records=len(result.records),
        blank_rows=result.blank_rows,
        invalid=len(result.invalid_records),
    )

    return result
