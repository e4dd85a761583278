"""
Equivalence (external <-> internal link) schemas.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import date, datetime
from decimal import Decimal

from models.base import BaseSchema
from models.catalog import CompanyType


class MatchCriterion(str, Enum):
    """How an equivalence was established."""
    MANUAL = "manual"
    NAME = "name"
    CODE = "code"


class EquivalenceResponse(BaseSchema):
    """Stored link between one external and one internal product."""

    id: int
    external_id: int
    internal_id: int
    criterion: MatchCriterion
    created_at: Optional[datetime] = None


class ManualLinkRequest(BaseSchema):
    """Link one chosen record from each unmatched pool."""

    external_id: int = Field(..., description="External product id")
    internal_id: int = Field(..., description="Internal product id")


class EquivalenceView(BaseSchema):
    """Equivalence joined with both products, for display."""

    id: int
    criterion: MatchCriterion
    created_at: Optional[datetime] = None

    external_id: int
    external_name: str
    external_code: Optional[str] = None
    external_price: Decimal
    external_date: date
    supplier: str
    company_type: CompanyType

    internal_id: int
    internal_name: str
    internal_code: Optional[str] = None
    internal_price: Decimal
    internal_date: date
