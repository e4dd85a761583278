"""
Catalog schemas: external (supplier/competitor) and internal price lists.
"""

from pydantic import Field, field_validator
from typing import Optional, Union
from enum import Enum
from datetime import date, datetime
from decimal import Decimal

from models.base import BaseSchema


class CatalogSide(str, Enum):
    """Which of the two catalogs a product belongs to."""
    EXTERNAL = "external"
    INTERNAL = "internal"

    @property
    def product_table(self) -> str:
        return f"{self.value}_products"

    @property
    def unmatched_table(self) -> str:
        return f"unmatched_{self.value}"

    @property
    def link_column(self) -> str:
        """Column on the equivalences table referencing this side."""
        return f"{self.value}_id"

    @property
    def opposite(self) -> "CatalogSide":
        if self is CatalogSide.EXTERNAL:
            return CatalogSide.INTERNAL
        return CatalogSide.EXTERNAL


class CompanyType(str, Enum):
    """Kind of company an external price list comes from."""
    SUPPLIER = "supplier"
    COMPETITOR = "competitor"


class ExternalProductResponse(BaseSchema):
    """External catalog row. Unique on (code, supplier)."""

    id: int = Field(..., description="Product id")
    name: str = Field(..., description="Product name as given by the supplier")
    code: Optional[str] = Field(None, description="Supplier product code")
    final_price: Decimal = Field(..., ge=0, description="Final price")
    company_type: CompanyType = Field(..., description="supplier or competitor")
    effective_date: date = Field(..., description="Date the price applies from")
    supplier: str = Field(..., description="Supplier name (free text)")
    imported_at: Optional[datetime] = Field(None, description="Last import timestamp")

    @property
    def side(self) -> CatalogSide:
        return CatalogSide.EXTERNAL


class InternalProductResponse(BaseSchema):
    """Internal catalog row. Unique on code."""

    id: int = Field(..., description="Product id")
    name: str = Field(..., description="Internal product name")
    code: Optional[str] = Field(None, description="Internal product code")
    final_price: Decimal = Field(..., ge=0, description="Final price")
    effective_date: date = Field(..., description="Date the price applies from")
    imported_at: Optional[datetime] = Field(None, description="Last import timestamp")

    @property
    def side(self) -> CatalogSide:
        return CatalogSide.INTERNAL


CatalogProduct = Union[ExternalProductResponse, InternalProductResponse]


class ProductEntry(BaseSchema):
    """
    Manually entered product.

    Goes through the same upsert and auto-matching path as an imported row.
    """

    name: str = Field(..., min_length=1, max_length=500, description="Product name")
    code: Optional[str] = Field(None, max_length=100, description="Product code")
    final_price: Decimal = Field(..., ge=0, description="Final price")
    effective_date: date = Field(default_factory=date.today, description="Price date")
    supplier: Optional[str] = Field(None, description="Supplier (external entries only)")
    company_type: Optional[CompanyType] = Field(None, description="supplier or competitor")

    @field_validator("code")
    @classmethod
    def empty_code_is_none(cls, v: Optional[str]) -> Optional[str]:
        """Blank codes are stored as NULL."""
        if v is None or not v.strip():
            return None
        return v.strip()


class ProductCheckRequest(BaseSchema):
    """Look up whether a product already exists before entering it."""

    side: CatalogSide
    code: Optional[str] = None
    name: Optional[str] = None
    supplier: Optional[str] = None


class ProductSearchField(str, Enum):
    """Field searched by the manual product search."""
    CODE = "code"
    NAME = "name"
    SUPPLIER = "supplier"


class UnmatchedProduct(BaseSchema):
    """Product currently sitting in its side's unmatched pool."""

    marker_id: int = Field(..., description="Unmatched marker id")
    product_id: int = Field(..., description="Catalog product id")
    reason: Optional[str] = Field(None, description="Why the product is unmatched")
    name: str
    code: Optional[str] = None
    final_price: Decimal
    effective_date: date
    supplier: Optional[str] = Field(None, description="External rows only")
    company_type: Optional[CompanyType] = Field(None, description="External rows only")
