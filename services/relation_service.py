"""
Relation store: the 1:1 equivalence table between the two catalogs.

Link and unlink run as Postgres functions (link_products,
unlink_equivalence) so the equivalence row and both unmatched markers
change together.
"""

from typing import Optional
import structlog

from supabase import Client

from config import get_supabase_client
from models.catalog import CatalogSide
from models.equivalence import MatchCriterion, EquivalenceResponse, EquivalenceView
from services.catalog_service import CatalogService
from exceptions import (
    AppError,
    ValidationError,
    ProductNotFoundError,
    EquivalenceNotFoundError,
    ProductAlreadyLinkedError,
    DatabaseError,
    IntegrityError,
)
from utils.db_errors import (
    is_not_found,
    is_unique_violation,
    is_integrity_violation,
    pg_error_hint,
)
from utils.text_utils import matches_search, normalize_search_text

logger = structlog.get_logger(__name__)

SORTABLE_FIELDS = set(EquivalenceView.model_fields.keys())


def map_link_error(error: Exception, external_id: int, internal_id: int) -> AppError:
    """Translate a link_products failure into the matching AppError."""
    hint = pg_error_hint(error)

    if is_not_found(error):
        if hint == CatalogSide.INTERNAL.value:
            return ProductNotFoundError(CatalogSide.INTERNAL.value, internal_id)
        return ProductNotFoundError(CatalogSide.EXTERNAL.value, external_id)

    if is_unique_violation(error):
        return ProductAlreadyLinkedError(external_id, internal_id, reason=hint)

    if is_integrity_violation(error):
        return IntegrityError(
            "link",
            str(error),
            details={"external_id": external_id, "internal_id": internal_id}
        )

    return DatabaseError("link", str(error))


def sort_rows(rows: list, sort_by: str, descending: bool) -> list:
    """
    Sort models by an attribute; None values always go last.
    """
    present = [r for r in rows if getattr(r, sort_by) is not None]
    missing = [r for r in rows if getattr(r, sort_by) is None]

    def key(row):
        value = getattr(row, sort_by)
        if isinstance(value, str):
            return normalize_search_text(value)
        return value

    present.sort(key=key, reverse=descending)
    return present + missing


class RelationService:
    """
    Equivalence storage.

    Handles create/delete of links and the joined listing.
    """

    def __init__(self, db: Optional[Client] = None, catalog: Optional[CatalogService] = None):
        self.db = db or get_supabase_client()
        self.catalog = catalog or CatalogService(self.db)
        self.table = "equivalences"

    # ===================
    # READ OPERATIONS
    # ===================

    def get(self, equivalence_id: int) -> EquivalenceResponse:
        """
        Get a single equivalence.

        Raises:
            EquivalenceNotFoundError: If it doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", equivalence_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_equivalence_failed", equivalence_id=equivalence_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise EquivalenceNotFoundError(equivalence_id)

        return EquivalenceResponse(**result.data[0])

    def get_by_product(self, side: CatalogSide, product_id: int) -> Optional[EquivalenceResponse]:
        """The equivalence a product takes part in, if any."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq(side.link_column, product_id)
                .execute()
            )
        except Exception as e:
            logger.error(
                "get_equivalence_by_product_failed",
                side=side.value,
                product_id=product_id,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        return EquivalenceResponse(**result.data[0])

    def get_all(self) -> list[EquivalenceResponse]:
        try:
            result = self.db.table(self.table).select("*").order("id").execute()
        except Exception as e:
            logger.error("get_equivalences_failed", error=str(e))
            raise DatabaseError("select", str(e))

        return [EquivalenceResponse(**row) for row in result.data]

    def list(
        self,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> list[EquivalenceView]:
        """
        Equivalences joined with both products.

        Args:
            search: Accent/case-insensitive text matched against every
                joined field
            sort_by: Any EquivalenceView field
            descending: Sort direction

        Raises:
            ValidationError: Unknown sort field
        """
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(
                f"Cannot sort by '{sort_by}'",
                code="INVALID_SORT_FIELD",
                details={"sort_by": sort_by, "allowed": sorted(SORTABLE_FIELDS)}
            )

        logger.info("listing_equivalences", search=search, sort_by=sort_by)

        links = self.get_all()
        externals = self.catalog.get_many(CatalogSide.EXTERNAL, [l.external_id for l in links])
        internals = self.catalog.get_many(CatalogSide.INTERNAL, [l.internal_id for l in links])

        views = []
        for link in links:
            ext = externals.get(link.external_id)
            itn = internals.get(link.internal_id)
            if ext is None or itn is None:
                # FKs cascade, so this only happens between two reads
                logger.warning("equivalence_product_missing", equivalence_id=link.id)
                continue

            view = EquivalenceView(
                id=link.id,
                criterion=link.criterion,
                created_at=link.created_at,
                external_id=ext.id,
                external_name=ext.name,
                external_code=ext.code,
                external_price=ext.final_price,
                external_date=ext.effective_date,
                supplier=ext.supplier,
                company_type=ext.company_type,
                internal_id=itn.id,
                internal_name=itn.name,
                internal_code=itn.code,
                internal_price=itn.final_price,
                internal_date=itn.effective_date,
            )

            if matches_search(search, *view.model_dump(mode="json").values()):
                views.append(view)

        return sort_rows(views, sort_by, descending)

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(
        self,
        external_id: int,
        internal_id: int,
        criterion: MatchCriterion,
    ) -> EquivalenceResponse:
        """
        Link two products and take both out of their unmatched pools.

        Raises:
            ProductNotFoundError: Either product is missing
            ProductAlreadyLinkedError: Either product is already linked
            IntegrityError: Any other constraint violation
        """
        logger.debug(
            "creating_equivalence",
            external_id=external_id,
            internal_id=internal_id,
            criterion=criterion.value
        )

        try:
            result = self.db.rpc(
                "link_products",
                {
                    "p_external_id": external_id,
                    "p_internal_id": internal_id,
                    "p_criterion": criterion.value,
                }
            ).execute()
        except Exception as e:
            error = map_link_error(e, external_id, internal_id)
            if isinstance(error, (IntegrityError, DatabaseError)):
                logger.error(
                    "create_equivalence_failed",
                    external_id=external_id,
                    internal_id=internal_id,
                    error=str(e)
                )
            raise error

        link = EquivalenceResponse(**result.data)

        logger.info(
            "equivalence_created",
            equivalence_id=link.id,
            external_id=external_id,
            internal_id=internal_id,
            criterion=criterion.value
        )

        return link

    def delete(self, equivalence_id: int) -> EquivalenceResponse:
        """
        Remove a link; both products return to their unmatched pools.

        Raises:
            EquivalenceNotFoundError: If it doesn't exist
        """
        try:
            result = self.db.rpc(
                "unlink_equivalence",
                {"p_equivalence_id": equivalence_id}
            ).execute()
        except Exception as e:
            if is_not_found(e):
                raise EquivalenceNotFoundError(equivalence_id)
            logger.error("delete_equivalence_failed", equivalence_id=equivalence_id, error=str(e))
            if is_integrity_violation(e):
                raise IntegrityError("unlink", str(e), details={"equivalence_id": equivalence_id})
            raise DatabaseError("unlink", str(e))

        link = EquivalenceResponse(**result.data)

        logger.info(
            "equivalence_deleted",
            equivalence_id=equivalence_id,
            external_id=link.external_id,
            internal_id=link.internal_id
        )

        return link


# Singleton instance for convenience
_relation_service: Optional[RelationService] = None


def get_relation_service() -> RelationService:
    """Get or create RelationService instance."""
    global _relation_service
    if _relation_service is None:
        _relation_service = RelationService()
    return _relation_service
