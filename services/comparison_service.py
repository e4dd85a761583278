"""
Comparison view: linked price pairs with their percent difference.

Read-only; derives everything from the equivalences and both catalogs
on every call.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import structlog

from supabase import Client

from config import get_supabase_client
from models.catalog import CatalogSide
from models.comparison import PriceComparison
from services.catalog_service import CatalogService
from services.relation_service import RelationService
from exceptions import ValidationError
from utils.text_utils import matches_search

logger = structlog.get_logger(__name__)

TWO_PLACES = Decimal("0.01")


def price_difference_percent(
    internal_price: Optional[Decimal],
    external_price: Optional[Decimal],
) -> Optional[Decimal]:
    """
    ((internal - external) / external) * 100, rounded half-up to 2 places.

    None when the external price is zero or either price is missing.
    """
    if internal_price is None or external_price is None:
        return None

    external_price = Decimal(str(external_price))
    if external_price == 0:
        return None

    internal_price = Decimal(str(internal_price))
    percent = (internal_price - external_price) / external_price * 100
    return percent.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class ComparisonService:
    """Builds the price comparison listing."""

    def __init__(
        self,
        db: Optional[Client] = None,
        catalog: Optional[CatalogService] = None,
        relations: Optional[RelationService] = None,
    ):
        self.db = db or get_supabase_client()
        self.catalog = catalog or CatalogService(self.db)
        self.relations = relations or RelationService(self.db, self.catalog)

    def list(
        self,
        search: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[PriceComparison]:
        """
        Compare every linked pair.

        Args:
            search: Text over names, codes and supplier
            date_from: Earliest external effective date (inclusive)
            date_to: Latest external effective date (inclusive)

        Returns:
            Comparisons ordered by supplier, then external name

        Raises:
            ValidationError: date_from after date_to
        """
        if date_from and date_to and date_from > date_to:
            raise ValidationError(
                "date_from must not be after date_to",
                code="INVALID_DATE_RANGE",
                details={"date_from": date_from.isoformat(), "date_to": date_to.isoformat()}
            )

        links = self.relations.get_all()
        externals = self.catalog.get_many(CatalogSide.EXTERNAL, [l.external_id for l in links])
        internals = self.catalog.get_many(CatalogSide.INTERNAL, [l.internal_id for l in links])

        comparisons = []
        for link in links:
            ext = externals.get(link.external_id)
            itn = internals.get(link.internal_id)

            if ext is not None:
                if date_from and ext.effective_date < date_from:
                    continue
                if date_to and ext.effective_date > date_to:
                    continue
            elif date_from or date_to:
                continue

            comparison = PriceComparison(
                equivalence_id=link.id,
                criterion=link.criterion,
                supplier=ext.supplier if ext else None,
                company_type=ext.company_type if ext else None,
                external_name=ext.name if ext else None,
                external_code=ext.code if ext else None,
                external_price=ext.final_price if ext else None,
                external_date=ext.effective_date if ext else None,
                internal_name=itn.name if itn else None,
                internal_code=itn.code if itn else None,
                internal_price=itn.final_price if itn else None,
                internal_date=itn.effective_date if itn else None,
                price_difference_percent=price_difference_percent(
                    itn.final_price if itn else None,
                    ext.final_price if ext else None,
                ),
            )

            if not matches_search(
                search,
                comparison.external_name,
                comparison.external_code,
                comparison.internal_name,
                comparison.internal_code,
                comparison.supplier,
            ):
                continue

            comparisons.append(comparison)

        comparisons.sort(key=lambda c: ((c.supplier or "").lower(), (c.external_name or "").lower(), c.equivalence_id))

        logger.info(
            "price_comparisons_built",
            count=len(comparisons),
            search=search,
            date_from=str(date_from) if date_from else None,
            date_to=str(date_to) if date_to else None
        )

        return comparisons


# Singleton instance for convenience
_comparison_service: Optional[ComparisonService] = None


def get_comparison_service() -> ComparisonService:
    """Get or create ComparisonService instance."""
    global _comparison_service
    if _comparison_service is None:
        _comparison_service = ComparisonService()
    return _comparison_service
