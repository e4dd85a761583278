"""
Equivalence resolver.

Decides which links exist between the two catalogs: automatic exact
code/name matches for newly inserted products, manual links, and
product deletion that hands the counterpart back to its unmatched pool.
Product-level matching is exact only; there is no fuzzy matching here.
"""

from typing import Optional
import structlog

from supabase import Client

from config import get_supabase_client
from models.catalog import CatalogSide, CatalogProduct, UnmatchedProduct
from models.equivalence import MatchCriterion, EquivalenceResponse
from services.catalog_service import CatalogService
from services.relation_service import RelationService, sort_rows
from exceptions import (
    ValidationError,
    ProductNotFoundError,
    ProductAlreadyLinkedError,
    DatabaseError,
    IntegrityError,
)
from utils.db_errors import is_not_found, is_integrity_violation
from utils.text_utils import matches_search, name_key, clean_text

logger = structlog.get_logger(__name__)

UNMATCHED_SORT_FIELDS = set(UnmatchedProduct.model_fields.keys())


class EquivalenceService:
    """
    Equivalence business logic.

    Wraps the relation store with matching rules and pool listings.
    """

    def __init__(
        self,
        db: Optional[Client] = None,
        catalog: Optional[CatalogService] = None,
        relations: Optional[RelationService] = None,
    ):
        self.db = db or get_supabase_client()
        self.catalog = catalog or CatalogService(self.db)
        self.relations = relations or RelationService(self.db, self.catalog)

    # ===================
    # UNMATCHED POOLS
    # ===================

    def _pool(self, side: CatalogSide) -> list[UnmatchedProduct]:
        """Markers of one side joined with their products, ordered by product id."""
        try:
            result = (
                self.db.table(side.unmatched_table)
                .select("*")
                .order("product_id")
                .execute()
            )
        except Exception as e:
            logger.error("get_unmatched_failed", side=side.value, error=str(e))
            raise DatabaseError("select", str(e))

        markers = result.data
        products = self.catalog.get_many(side, [m["product_id"] for m in markers])

        pool = []
        for marker in markers:
            product = products.get(marker["product_id"])
            if product is None:
                continue
            pool.append(UnmatchedProduct(
                marker_id=marker["id"],
                product_id=product.id,
                reason=marker.get("reason"),
                name=product.name,
                code=product.code,
                final_price=product.final_price,
                effective_date=product.effective_date,
                supplier=getattr(product, "supplier", None),
                company_type=getattr(product, "company_type", None),
            ))

        return pool

    def list_unmatched(
        self,
        side: CatalogSide,
        search: Optional[str] = None,
        sort_by: str = "effective_date",
        descending: bool = True,
    ) -> list[UnmatchedProduct]:
        """
        Products of one side that have no equivalence.

        Args:
            side: Which pool
            search: Accent/case-insensitive text over code, name and supplier
            sort_by: Any UnmatchedProduct field
            descending: Sort direction

        Raises:
            ValidationError: Unknown sort field
        """
        if sort_by not in UNMATCHED_SORT_FIELDS:
            raise ValidationError(
                f"Cannot sort by '{sort_by}'",
                code="INVALID_SORT_FIELD",
                details={"sort_by": sort_by, "allowed": sorted(UNMATCHED_SORT_FIELDS)}
            )

        pool = [
            p for p in self._pool(side)
            if matches_search(search, p.code, p.name, p.supplier)
        ]

        logger.info("unmatched_listed", side=side.value, count=len(pool), search=search)

        return sort_rows(pool, sort_by, descending)

    # ===================
    # AUTOMATIC MATCHING
    # ===================

    def auto_match(self, side: CatalogSide, product: CatalogProduct) -> Optional[EquivalenceResponse]:
        """
        Link a newly inserted product to an unmatched product on the other side.

        Candidates are taken from a snapshot of the opposite pool in id
        order: exact code matches first (criterion code), then
        case-insensitive name matches (criterion name). A candidate taken
        by a concurrent link is skipped in favour of the next one.

        Returns:
            The created equivalence, or None when the product stays unmatched
        """
        pool = self._pool(side.opposite)

        code = clean_text(product.code, max_length=100)
        key = name_key(product.name)

        attempts: list[tuple[MatchCriterion, list[UnmatchedProduct]]] = [
            (MatchCriterion.CODE, [c for c in pool if code and clean_text(c.code, 100) == code]),
            (MatchCriterion.NAME, [c for c in pool if key and name_key(c.name) == key]),
        ]

        for criterion, candidates in attempts:
            for candidate in candidates:
                if side is CatalogSide.EXTERNAL:
                    external_id, internal_id = product.id, candidate.product_id
                else:
                    external_id, internal_id = candidate.product_id, product.id

                try:
                    link = self.relations.create(external_id, internal_id, criterion)
                except ProductAlreadyLinkedError as e:
                    if e.details.get("reason") == f"{side.value}_linked":
                        # Our own product got linked meanwhile
                        logger.info("auto_link_self_taken", side=side.value, product_id=product.id)
                        return None
                    logger.info(
                        "auto_link_candidate_taken",
                        side=side.value,
                        product_id=product.id,
                        candidate_id=candidate.product_id
                    )
                    continue
                except ProductNotFoundError as e:
                    if e.details.get("side") == side.value:
                        return None
                    continue

                logger.info(
                    "auto_link_created",
                    side=side.value,
                    product_id=product.id,
                    candidate_id=candidate.product_id,
                    criterion=criterion.value,
                    equivalence_id=link.id
                )
                return link

        logger.debug("auto_link_none", side=side.value, product_id=product.id)
        return None

    def auto_match_external(self, product: CatalogProduct) -> Optional[EquivalenceResponse]:
        return self.auto_match(CatalogSide.EXTERNAL, product)

    def auto_match_internal(self, product: CatalogProduct) -> Optional[EquivalenceResponse]:
        return self.auto_match(CatalogSide.INTERNAL, product)

    # ===================
    # MANUAL OPERATIONS
    # ===================

    def create_manual_link(self, external_id: int, internal_id: int) -> EquivalenceResponse:
        """
        Link a chosen pair regardless of names or codes.

        Raises:
            ProductNotFoundError: Either product is missing
            ProductAlreadyLinkedError: Either product is already linked
        """
        link = self.relations.create(external_id, internal_id, MatchCriterion.MANUAL)

        logger.info(
            "manual_link_created",
            equivalence_id=link.id,
            external_id=external_id,
            internal_id=internal_id
        )

        return link

    def delete_product(self, side: CatalogSide, product_id: int) -> dict:
        """
        Delete a product; a linked counterpart goes back to its pool.

        Returns:
            Dict with id, equivalence_id and released_id (the counterpart
            returned to the unmatched pool, if any)

        Raises:
            ProductNotFoundError: If product doesn't exist
        """
        try:
            result = self.db.rpc(f"delete_{side.value}_product", {"p_id": product_id}).execute()
        except Exception as e:
            if is_not_found(e):
                raise ProductNotFoundError(side.value, product_id)
            logger.error("delete_product_failed", side=side.value, product_id=product_id, error=str(e))
            if is_integrity_violation(e):
                raise IntegrityError("delete", str(e), details={"side": side.value, "id": product_id})
            raise DatabaseError("delete", str(e))

        outcome = result.data

        logger.info(
            "product_deleted",
            side=side.value,
            product_id=product_id,
            equivalence_id=outcome.get("equivalence_id"),
            released_id=outcome.get("released_id")
        )

        return outcome


# Singleton instance for convenience
_equivalence_service: Optional[EquivalenceService] = None


def get_equivalence_service() -> EquivalenceService:
    """Get or create EquivalenceService instance."""
    global _equivalence_service
    if _equivalence_service is None:
        _equivalence_service = EquivalenceService()
    return _equivalence_service
