"""
Price list import models.

Covers header mapping, per-row upsert outcomes and the batch summary
returned to the caller.
"""

from typing import Optional
from datetime import date, datetime
from enum import Enum
from pydantic import ConfigDict, Field

from models.base import BaseSchema
from models.catalog import CatalogSide, CompanyType


class CanonicalField(str, Enum):
    """Fields the import pipeline extracts from any spreadsheet layout."""
    NAME = "name"
    CODE = "code"
    PRICE = "price"


class HeaderMapping(BaseSchema):
    """
    Best-guess raw header per canonical field.

    Values are the raw header cells exactly as they appear in the sheet,
    or None when no header cleared the acceptance threshold.
    """

    name: Optional[str] = Field(None, description="Raw header holding the product name")
    code: Optional[str] = Field(None, description="Raw header holding the product code")
    price: Optional[str] = Field(None, description="Raw header holding the final price")

    # Raw headers must round-trip unchanged
    model_config = ConfigDict(str_strip_whitespace=False)

    @property
    def is_complete(self) -> bool:
        """Name and price are required to import; code is optional."""
        return self.name is not None and self.price is not None

    def to_column_mapping(self) -> dict[str, CanonicalField]:
        """Invert to raw header -> canonical field, as consumed by the normalizer."""
        mapping: dict[str, CanonicalField] = {}
        for canonical in CanonicalField:
            raw = getattr(self, canonical.value)
            if raw is not None and raw not in mapping:
                mapping[raw] = canonical
        return mapping

    @classmethod
    def from_column_mapping(cls, column_mapping: dict[str, CanonicalField]) -> "HeaderMapping":
        values: dict[str, str] = {}
        for raw, canonical in column_mapping.items():
            values.setdefault(CanonicalField(canonical).value, raw)
        return cls(**values)


class UpsertOutcome(str, Enum):
    """Classification of one imported row."""
    INSERTED = "inserted"
    UPDATED = "updated"
    UPDATED_PRICE_CHANGED = "updated_price_changed"
    SKIPPED = "skipped"


class RowIssue(BaseSchema):
    """A row that was skipped for a validation or storage reason."""

    row: Optional[int] = None
    field: Optional[str] = None
    error: str


class RowResult(BaseSchema):
    """Outcome of upserting a single record."""

    outcome: UpsertOutcome
    row_number: Optional[int] = Field(None, description="1-based sheet row")
    product_id: Optional[int] = None
    reason: Optional[str] = Field(None, description="Why the row was skipped")
    issue: Optional[RowIssue] = Field(None, description="Set when the row was rejected")
    equivalence_id: Optional[int] = Field(None, description="Auto-link created for a new row")


class ImportSummary(BaseSchema):
    """
    Aggregate result for a batch.

    A batch always reports success; skipped rows are counted, not failures.
    """

    success: bool = True
    side: CatalogSide
    supplier: Optional[str] = None
    inserted: int = 0
    updated: int = 0
    updated_price_changed: int = 0
    skipped: int = 0
    linked: int = Field(0, description="Equivalences created automatically")
    issues: list[RowIssue] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.inserted + self.updated + self.updated_price_changed + self.skipped

    def record(self, result: RowResult) -> None:
        """Fold one row result into the counters."""
        if result.outcome is UpsertOutcome.INSERTED:
            self.inserted += 1
        elif result.outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        elif result.outcome is UpsertOutcome.UPDATED_PRICE_CHANGED:
            self.updated_price_changed += 1
        else:
            self.skipped += 1

        if result.equivalence_id is not None:
            self.linked += 1

        if result.issue is not None:
            self.issues.append(result.issue)


class ImportRequest(BaseSchema):
    """Form fields accompanying an uploaded price list."""

    supplier_hint: str = Field(..., min_length=1, description="Supplier name, or the internal catalog name")
    side: Optional[CatalogSide] = Field(None, description="Inferred from supplier_hint when omitted")
    header_row: int = Field(1, ge=1, description="1-based header row")
    mapping: HeaderMapping
    company_type: Optional[CompanyType] = None
    effective_date: Optional[date] = None
    source_filename: Optional[str] = None
    save_template: bool = Field(False, description="Remember this mapping for the supplier")


class ImportPreview(BaseSchema):
    """First rows of an uploaded sheet plus the detected layout."""

    total_rows: int
    rows: list[list[str]]
    suggested_header_row: int
    headers: list[str]
    mapping: HeaderMapping
    template_applied: bool = False

    model_config = ConfigDict(str_strip_whitespace=False)


class MappingTemplate(BaseSchema):
    """Saved column mapping for a supplier."""

    supplier: str
    header_row: int = Field(1, ge=1)
    mapping: HeaderMapping
    updated_at: Optional[datetime] = None
