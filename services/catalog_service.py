"""
Catalog service: reads and upserts for both price lists.

The upsert classifies every row as inserted / updated /
updated_price_changed / skipped. Inserts go through the
insert_*_product RPC so the product and its unmatched marker are
written in one transaction; updates are plain row updates and never
touch markers or equivalences.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
import structlog

from supabase import Client

from config import get_supabase_client, settings
from models.catalog import (
    CatalogSide,
    CompanyType,
    ExternalProductResponse,
    InternalProductResponse,
    CatalogProduct,
    ProductCheckRequest,
    ProductSearchField,
)
from models.ingest import RowIssue, RowResult, UpsertOutcome
from parsers.row_normalizer import NormalizedRecord
from exceptions import (
    AppError,
    ValidationError,
    MissingFieldError,
    InvalidPriceError,
    ProductNotFoundError,
    DatabaseError,
    IntegrityError,
)
from utils.db_errors import escape_like, is_unique_violation
from utils.text_utils import clean_text

logger = structlog.get_logger(__name__)

UNCHANGED = "unchanged"


def to_product(side: CatalogSide, row: dict) -> CatalogProduct:
    """Build the response model for a raw table row."""
    if side is CatalogSide.EXTERNAL:
        return ExternalProductResponse(**row)
    return InternalProductResponse(**row)


def _same_price(stored: Decimal, incoming: Decimal) -> bool:
    return Decimal(str(stored)) == Decimal(str(incoming))


class CatalogService:
    """
    Catalog business logic.

    Handles lookups by id / natural key, search and the import upsert.
    """

    def __init__(self, db: Optional[Client] = None):
        self.db = db or get_supabase_client()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_by_id(self, side: CatalogSide, product_id: int) -> CatalogProduct:
        """
        Get a single product.

        Raises:
            ProductNotFoundError: If product doesn't exist
        """
        logger.debug("getting_product", side=side.value, product_id=product_id)

        try:
            result = (
                self.db.table(side.product_table)
                .select("*")
                .eq("id", product_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_product_failed", side=side.value, product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ProductNotFoundError(side.value, product_id)

        return to_product(side, result.data[0])

    def get_many(self, side: CatalogSide, product_ids: list[int]) -> dict[int, CatalogProduct]:
        """
        Get several products keyed by id.

        Missing ids are simply absent from the result.
        """
        if not product_ids:
            return {}

        try:
            result = (
                self.db.table(side.product_table)
                .select("*")
                .in_("id", list(set(product_ids)))
                .execute()
            )
        except Exception as e:
            logger.error("get_products_failed", side=side.value, count=len(product_ids), error=str(e))
            raise DatabaseError("select", str(e))

        products = [to_product(side, row) for row in result.data]
        return {p.id: p for p in products}

    def get_all(self, side: CatalogSide, supplier: Optional[str] = None) -> list[CatalogProduct]:
        """List a whole catalog, optionally one supplier's rows, ordered by name."""
        logger.info("getting_products", side=side.value, supplier=supplier)

        try:
            query = self.db.table(side.product_table).select("*")
            if supplier and side is CatalogSide.EXTERNAL:
                query = query.eq("supplier", supplier)
            result = query.order("name").execute()
        except Exception as e:
            logger.error("get_all_products_failed", side=side.value, error=str(e))
            raise DatabaseError("select", str(e))

        products = [to_product(side, row) for row in result.data]
        logger.info("products_retrieved", side=side.value, count=len(products))
        return products

    def find_by_natural_key(
        self,
        side: CatalogSide,
        code: Optional[str],
        name: Optional[str] = None,
        supplier: Optional[str] = None,
    ) -> Optional[CatalogProduct]:
        """
        Look up the row an import of (code[, supplier]) targets.

        Rows without code fall back to a case-insensitive name match
        among code-less rows (same supplier for external rows). Several
        code-less rows with the same name resolve to the lowest id.
        """
        if not code and not name:
            return None

        try:
            query = self.db.table(side.product_table).select("*")

            if side is CatalogSide.EXTERNAL:
                query = query.eq("supplier", supplier)

            if code:
                query = query.eq("code", code)
            else:
                query = query.is_("code", "null").ilike("name", escape_like(name))

            result = query.order("id").limit(1).execute()

        except Exception as e:
            logger.error(
                "get_product_by_key_failed",
                side=side.value,
                code=code,
                supplier=supplier,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        if not result.data:
            return None

        return to_product(side, result.data[0])

    def search(
        self,
        side: CatalogSide,
        by: ProductSearchField,
        query_text: str,
        limit: int = 50,
    ) -> list[CatalogProduct]:
        """
        Search products by code, name or supplier (substring, case-insensitive).

        Raises:
            ValidationError: Supplier search on the internal catalog
        """
        if by is ProductSearchField.SUPPLIER and side is CatalogSide.INTERNAL:
            raise ValidationError(
                "Internal products have no supplier",
                code="INVALID_SEARCH_FIELD",
                details={"side": side.value, "by": by.value}
            )

        text = (query_text or "").strip()
        if not text:
            return []

        try:
            result = (
                self.db.table(side.product_table)
                .select("*")
                .ilike(by.value, f"%{escape_like(text)}%")
                .order("name")
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("search_products_failed", side=side.value, by=by.value, error=str(e))
            raise DatabaseError("select", str(e))

        return [to_product(side, row) for row in result.data]

    # ===================
    # UPSERT
    # ===================

    def upsert(
        self,
        side: CatalogSide,
        record: NormalizedRecord,
        supplier: Optional[str] = None,
        company_type: Optional[CompanyType] = None,
        effective_date: Optional[date] = None,
    ) -> tuple[RowResult, Optional[CatalogProduct]]:
        """
        Persist one normalized record and classify the outcome.

        Args:
            side: Target catalog
            record: Normalized row
            supplier: Supplier name (external rows)
            company_type: supplier/competitor (external rows)
            effective_date: Price date; defaults to today

        Returns:
            Tuple of (row result, stored product or None when skipped
            for validation)
        """
        effective_date = effective_date or date.today()

        try:
            fields = self._validated_fields(side, record, supplier, company_type, effective_date)
        except ValidationError as e:
            logger.info(
                "row_skipped",
                side=side.value,
                row=record.row_number,
                reason=e.message,
            )
            return RowResult(
                outcome=UpsertOutcome.SKIPPED,
                row_number=record.row_number,
                reason=e.message,
                issue=RowIssue(
                    row=record.row_number,
                    field=e.details.get("field", "price" if isinstance(e, InvalidPriceError) else None),
                    error=e.message,
                ),
            ), None

        existing = self.find_by_natural_key(
            side, fields["code"], fields["name"], fields.get("supplier")
        )

        if existing is None:
            try:
                product = self._insert(side, fields)
            except AppError:
                raise
            except Exception as e:
                if not is_unique_violation(e):
                    logger.error("insert_product_failed", side=side.value, code=fields["code"], error=str(e))
                    raise DatabaseError("insert", str(e))

                # Another import inserted the same key first; classify against it
                logger.info("insert_race_lost", side=side.value, code=fields["code"])
                existing = self.find_by_natural_key(
                    side, fields["code"], fields["name"], fields.get("supplier")
                )
                if existing is None:
                    raise IntegrityError(
                        "insert",
                        "unique violation but no row holds the key",
                        details={"side": side.value, "code": fields["code"]}
                    )
            else:
                logger.info(
                    "product_inserted",
                    side=side.value,
                    product_id=product.id,
                    code=product.code,
                )
                return RowResult(
                    outcome=UpsertOutcome.INSERTED,
                    row_number=record.row_number,
                    product_id=product.id,
                ), product

        return self._update_existing(side, existing, fields, record.row_number)

    def upsert_external(
        self,
        record: NormalizedRecord,
        supplier: str,
        company_type: Optional[CompanyType] = None,
        effective_date: Optional[date] = None,
    ) -> tuple[RowResult, Optional[CatalogProduct]]:
        return self.upsert(CatalogSide.EXTERNAL, record, supplier, company_type, effective_date)

    def upsert_internal(
        self,
        record: NormalizedRecord,
        effective_date: Optional[date] = None,
    ) -> tuple[RowResult, Optional[CatalogProduct]]:
        return self.upsert(CatalogSide.INTERNAL, record, effective_date=effective_date)

    def find_existing(self, request: ProductCheckRequest) -> Optional[CatalogProduct]:
        """
        Check whether a product is already in a catalog before entering it.

        Raises:
            ValidationError: Neither code nor name given, or an external
                check without supplier
        """
        code = clean_text(request.code, max_length=100)
        name = clean_text(request.name)

        if not code and not name:
            raise ValidationError(
                "Provide a code or a name to check",
                code="MISSING_LOOKUP_KEY"
            )

        supplier = clean_text(request.supplier)
        if request.side is CatalogSide.EXTERNAL and not supplier:
            raise MissingFieldError("supplier")

        return self.find_by_natural_key(request.side, code, name, supplier)

    def _validated_fields(
        self,
        side: CatalogSide,
        record: NormalizedRecord,
        supplier: Optional[str],
        company_type: Optional[CompanyType],
        effective_date: date,
    ) -> dict:
        """
        Required-field checks for one record.

        Raises:
            MissingFieldError: Name, price or supplier absent
            InvalidPriceError: Price present but malformed
        """
        name = clean_text(record.name)
        if not name:
            raise MissingFieldError("name", record.row_number)

        if record.price_error:
            raise InvalidPriceError(record.raw_price, record.row_number)
        if record.final_price is None:
            raise MissingFieldError("price", record.row_number)
        if record.final_price < 0:
            raise InvalidPriceError(record.final_price, record.row_number)

        fields = {
            "name": name,
            "code": clean_text(record.code, max_length=100),
            "final_price": record.final_price,
            "effective_date": effective_date,
        }

        if side is CatalogSide.EXTERNAL:
            supplier = clean_text(supplier)
            if not supplier:
                raise MissingFieldError("supplier", record.row_number)
            fields["supplier"] = supplier
            fields["company_type"] = CompanyType(company_type or settings.default_company_type)

        return fields

    def _insert(self, side: CatalogSide, fields: dict) -> CatalogProduct:
        """Insert product + unmatched marker in one transaction."""
        params = {
            "p_name": fields["name"],
            "p_code": fields["code"],
            "p_final_price": str(fields["final_price"]),
            "p_effective_date": fields["effective_date"].isoformat(),
        }
        if side is CatalogSide.EXTERNAL:
            params["p_company_type"] = fields["company_type"].value
            params["p_supplier"] = fields["supplier"]

        result = self.db.rpc(f"insert_{side.value}_product", params).execute()
        return to_product(side, result.data)

    def _update_existing(
        self,
        side: CatalogSide,
        existing: CatalogProduct,
        fields: dict,
        row_number: Optional[int],
    ) -> tuple[RowResult, CatalogProduct]:
        """Compare against the stored row and write only what changed."""
        price_changed = not _same_price(existing.final_price, fields["final_price"])

        update_data: dict = {}
        if existing.name != fields["name"]:
            update_data["name"] = fields["name"]
        if existing.code != fields["code"] and fields["code"] is not None:
            update_data["code"] = fields["code"]
        if side is CatalogSide.EXTERNAL and existing.company_type != fields["company_type"]:
            update_data["company_type"] = fields["company_type"].value

        if price_changed:
            update_data["final_price"] = str(fields["final_price"])
            update_data["effective_date"] = fields["effective_date"].isoformat()

        if not update_data:
            logger.debug("product_unchanged", side=side.value, product_id=existing.id)
            return RowResult(
                outcome=UpsertOutcome.SKIPPED,
                row_number=row_number,
                product_id=existing.id,
                reason=UNCHANGED,
            ), existing

        update_data["imported_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = (
                self.db.table(side.product_table)
                .update(update_data)
                .eq("id", existing.id)
                .execute()
            )
        except Exception as e:
            logger.error("update_product_failed", side=side.value, product_id=existing.id, error=str(e))
            raise DatabaseError("update", str(e))

        product = to_product(side, result.data[0]) if result.data else existing
        outcome = UpsertOutcome.UPDATED_PRICE_CHANGED if price_changed else UpsertOutcome.UPDATED

        logger.info(
            "product_updated",
            side=side.value,
            product_id=existing.id,
            outcome=outcome.value,
            fields=list(update_data.keys()),
        )

        return RowResult(
            outcome=outcome,
            row_number=row_number,
            product_id=existing.id,
        ), product


# Singleton instance for convenience
_catalog_service: Optional[CatalogService] = None


def get_catalog_service() -> CatalogService:
    """Get or create CatalogService instance."""
    global _catalog_service
    if _catalog_service is None:
        _catalog_service = CatalogService()
    return _catalog_service
