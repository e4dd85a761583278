"""
Price comparison schemas.
"""

from pydantic import Field, computed_field
from typing import Optional
from datetime import date
from decimal import Decimal

from models.base import BaseSchema
from models.catalog import CompanyType
from models.equivalence import MatchCriterion


class PriceComparison(BaseSchema):
    """
    Linked pair of prices.

    price_difference_percent is ((internal - external) / external) * 100,
    rounded to 2 decimals, or None when the difference is not applicable.
    """

    equivalence_id: int
    criterion: MatchCriterion

    supplier: Optional[str] = None
    company_type: Optional[CompanyType] = None
    external_name: Optional[str] = None
    external_code: Optional[str] = None
    external_price: Optional[Decimal] = None
    external_date: Optional[date] = None

    internal_name: Optional[str] = None
    internal_code: Optional[str] = None
    internal_price: Optional[Decimal] = None
    internal_date: Optional[date] = None

    price_difference_percent: Optional[Decimal] = Field(
        None,
        description="None means not applicable (zero/missing external price or missing side)"
    )

    @computed_field
    @property
    def comparable(self) -> bool:
        return self.price_difference_percent is not None
