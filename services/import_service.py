"""
Import orchestration.

Spreadsheet -> header mapping -> normalized rows -> upsert -> auto-match.
Each row is its own unit of work: a bad row is counted as skipped and
never undoes rows already stored.
"""

from datetime import date, datetime, timezone
from typing import Any, BinaryIO, Optional, Sequence, Union
import structlog

from supabase import Client

from config import get_supabase_client, settings
from models.catalog import CatalogSide, CompanyType, ProductEntry
from models.ingest import (
    CanonicalField,
    HeaderMapping,
    ImportPreview,
    ImportRequest,
    ImportSummary,
    MappingTemplate,
    RowIssue,
    RowResult,
    UpsertOutcome,
)
from parsers.excel_parser import read_matrix
from parsers.header_mapper import detect_mapping, suggest_header_row
from parsers.row_normalizer import NormalizedRecord, cell_to_text, normalize_rows
from services.catalog_service import CatalogService
from services.equivalence_service import EquivalenceService
from exceptions import (
    ValidationError,
    MissingFieldError,
    DatabaseError,
    IntegrityError,
    ImportUnreadableError,
    MappingTemplateNotFoundError,
)
from utils.text_utils import clean_text

logger = structlog.get_logger(__name__)


class ImportService:
    """
    Runs price list imports for either catalog.
    """

    def __init__(
        self,
        db: Optional[Client] = None,
        catalog: Optional[CatalogService] = None,
        equivalences: Optional[EquivalenceService] = None,
    ):
        self.db = db or get_supabase_client()
        self.catalog = catalog or CatalogService(self.db)
        self.equivalences = equivalences or EquivalenceService(self.db, self.catalog)
        self.templates_table = "column_mappings"
        self.log_table = "imports_log"

    # ===================
    # SIDE / TEMPLATES
    # ===================

    def resolve_side(self, supplier_hint: Optional[str], side: Optional[CatalogSide] = None) -> CatalogSide:
        """
        Pick the target catalog.

        An explicit side wins; otherwise the internal catalog name
        (case-insensitive) selects the internal catalog and anything
        else is a supplier.
        """
        if side is not None:
            return CatalogSide(side)

        hint = (supplier_hint or "").strip().casefold()
        if hint and hint == settings.internal_catalog_name.strip().casefold():
            return CatalogSide.INTERNAL
        return CatalogSide.EXTERNAL

    def get_template(self, supplier: str) -> MappingTemplate:
        """
        Saved column mapping for a supplier.

        Raises:
            MappingTemplateNotFoundError: Nothing saved yet
        """
        supplier = (supplier or "").strip()

        try:
            result = (
                self.db.table(self.templates_table)
                .select("*")
                .eq("supplier", supplier)
                .execute()
            )
        except Exception as e:
            logger.error("get_mapping_template_failed", supplier=supplier, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise MappingTemplateNotFoundError(supplier)

        return MappingTemplate(**result.data[0])

    def find_template(self, supplier: Optional[str]) -> Optional[MappingTemplate]:
        if not supplier or not supplier.strip():
            return None
        try:
            return self.get_template(supplier)
        except MappingTemplateNotFoundError:
            return None

    def save_template(self, supplier: str, header_row: int, mapping: HeaderMapping) -> MappingTemplate:
        """
        Create or replace the column mapping remembered for a supplier.

        Raises:
            MissingFieldError: Empty supplier
            ValidationError: Mapping lacks name or price
        """
        supplier = clean_text(supplier)
        if not supplier:
            raise MissingFieldError("supplier")

        if not mapping.is_complete:
            raise ValidationError(
                "Mapping must include name and price columns",
                code="INCOMPLETE_MAPPING",
                details={"mapping": mapping.model_dump()}
            )

        data = {
            "supplier": supplier,
            "header_row": header_row,
            "mapping": mapping.model_dump(),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            result = (
                self.db.table(self.templates_table)
                .upsert(data, on_conflict="supplier")
                .execute()
            )
        except Exception as e:
            logger.error("save_mapping_template_failed", supplier=supplier, error=str(e))
            raise DatabaseError("upsert", str(e))

        logger.info("mapping_template_saved", supplier=supplier, header_row=header_row)

        return MappingTemplate(**result.data[0])

    # ===================
    # PREVIEW
    # ===================

    def preview(
        self,
        file: Union[str, BinaryIO],
        filename: Optional[str] = None,
        supplier_hint: Optional[str] = None,
        side: Optional[CatalogSide] = None,
        header_row: Optional[int] = None,
    ) -> ImportPreview:
        """
        First rows of a sheet plus the detected header row and mapping.

        A saved template for the supplier takes precedence over detection.

        Raises:
            ImportUnreadableError: File cannot be read or is empty
        """
        matrix = read_matrix(file, filename=filename)
        side = self.resolve_side(supplier_hint, side)

        template = self.find_template(supplier_hint) if side is CatalogSide.EXTERNAL else None

        if header_row is None:
            header_row = template.header_row if template else suggest_header_row(matrix)
        if header_row < 1 or header_row > len(matrix):
            raise ImportUnreadableError(
                "Header row is outside the sheet",
                details={"header_row": header_row, "total_rows": len(matrix)}
            )

        headers = ["" if c is None else str(c) for c in matrix[header_row - 1]]
        if template and all(
            raw in headers for raw in template.mapping.to_column_mapping()
        ):
            mapping, template_applied = template.mapping, True
        else:
            mapping, template_applied = detect_mapping(headers, side), False

        logger.info(
            "import_previewed",
            filename=filename,
            side=side.value,
            total_rows=len(matrix),
            header_row=header_row,
            template_applied=template_applied,
            mapping=mapping.model_dump(),
        )

        return ImportPreview(
            total_rows=len(matrix),
            rows=[[cell_to_text(c) for c in row] for row in matrix[:settings.preview_rows]],
            suggested_header_row=header_row,
            headers=headers,
            mapping=mapping,
            template_applied=template_applied,
        )

    # ===================
    # IMPORT
    # ===================

    def import_batch(
        self,
        supplier_hint: str,
        raw_matrix: Sequence[Sequence[Any]],
        header_row_number: int,
        column_mapping: dict[str, CanonicalField],
        side: Optional[CatalogSide] = None,
        company_type: Optional[CompanyType] = None,
        effective_date: Optional[date] = None,
        source_filename: Optional[str] = None,
    ) -> ImportSummary:
        """
        Import one sheet into a catalog.

        Args:
            supplier_hint: Supplier name, or the internal catalog name
            raw_matrix: Cell matrix as read from the sheet
            header_row_number: 1-based header row
            column_mapping: Raw header -> canonical field
            side: Target catalog; inferred from supplier_hint when None
            company_type: supplier/competitor for external rows
            effective_date: Price date; defaults to today
            source_filename: Recorded in the import log

        Returns:
            ImportSummary (always success=True; bad rows are skipped)

        The supplier and mapping checks fail the whole batch before any row
        is read or written.

        Raises:
            MissingFieldError: No supplier for an external import
            ValidationError: Mapping lacks name or price
            ImportUnreadableError: Empty sheet or header row out of range
            IntegrityError: Storage constraint violated unexpectedly
        """
        side = self.resolve_side(supplier_hint, side)
        supplier = clean_text(supplier_hint) if side is CatalogSide.EXTERNAL else None

        if side is CatalogSide.EXTERNAL and not supplier:
            raise MissingFieldError("supplier")

        mapped = {CanonicalField(v) for v in column_mapping.values()}
        missing = [f.value for f in (CanonicalField.NAME, CanonicalField.PRICE) if f not in mapped]
        if missing:
            raise ValidationError(
                "Mapping must include name and price columns",
                code="INCOMPLETE_MAPPING",
                details={"missing": missing}
            )

        normalized = normalize_rows(raw_matrix, header_row_number, column_mapping)
        effective_date = effective_date or date.today()

        logger.info(
            "import_started",
            side=side.value,
            supplier=supplier,
            filename=source_filename,
            rows=len(normalized.records),
        )

        summary = ImportSummary(side=side, supplier=supplier)

        for record in normalized.records:
            result = self._import_record(side, record, supplier, company_type, effective_date)
            summary.record(result)

        self._log_import(summary, source_filename)

        logger.info(
            "import_completed",
            side=side.value,
            supplier=supplier,
            inserted=summary.inserted,
            updated=summary.updated,
            updated_price_changed=summary.updated_price_changed,
            skipped=summary.skipped,
            linked=summary.linked,
        )

        return summary

    def import_file(
        self,
        file: Union[str, BinaryIO],
        request: ImportRequest,
        filename: Optional[str] = None,
    ) -> ImportSummary:
        """
        Read an uploaded sheet and import it with the confirmed mapping.

        Raises:
            ImportUnreadableError: File cannot be read
            ValidationError: Mapping lacks name or price
        """
        if not request.mapping.is_complete:
            raise ValidationError(
                "Mapping must include name and price columns",
                code="INCOMPLETE_MAPPING",
                details={"mapping": request.mapping.model_dump()}
            )

        filename = request.source_filename or filename
        matrix = read_matrix(file, filename=filename)

        summary = self.import_batch(
            supplier_hint=request.supplier_hint,
            raw_matrix=matrix,
            header_row_number=request.header_row,
            column_mapping=request.mapping.to_column_mapping(),
            side=request.side,
            company_type=request.company_type,
            effective_date=request.effective_date,
            source_filename=filename,
        )

        if request.save_template and summary.side is CatalogSide.EXTERNAL:
            self.save_template(summary.supplier, request.header_row, request.mapping)

        return summary

    def import_entry(self, side: CatalogSide, entry: ProductEntry) -> RowResult:
        """
        Store a manually entered product through the import path.

        Raises:
            MissingFieldError: External entry without supplier
            ValidationError: Entry rejected by the upsert checks
        """
        record = NormalizedRecord(
            row_number=None,
            name=entry.name,
            code=entry.code,
            final_price=entry.final_price,
            raw_price=str(entry.final_price),
        )

        supplier = None
        if side is CatalogSide.EXTERNAL:
            supplier = clean_text(entry.supplier)
            if not supplier:
                raise MissingFieldError("supplier")

        result = self._import_record(side, record, supplier, entry.company_type, entry.effective_date)

        if result.issue is not None:
            raise ValidationError(
                result.issue.error,
                code="INVALID_ENTRY",
                details={"field": result.issue.field}
            )

        logger.info(
            "product_entered",
            side=side.value,
            product_id=result.product_id,
            outcome=result.outcome.value,
            equivalence_id=result.equivalence_id,
        )

        return result

    def _import_record(
        self,
        side: CatalogSide,
        record: NormalizedRecord,
        supplier: Optional[str],
        company_type: Optional[CompanyType],
        effective_date: date,
    ) -> RowResult:
        """Upsert one record and auto-match it when it is new."""
        try:
            result, product = self.catalog.upsert(
                side, record, supplier, company_type, effective_date
            )
        except IntegrityError:
            raise
        except DatabaseError as e:
            logger.warning("row_failed", side=side.value, row=record.row_number, error=e.message)
            return RowResult(
                outcome=UpsertOutcome.SKIPPED,
                row_number=record.row_number,
                reason=e.message,
                issue=RowIssue(row=record.row_number, error=e.message),
            )

        if result.outcome is UpsertOutcome.INSERTED and product is not None:
            try:
                link = self.equivalences.auto_match(side, product)
            except IntegrityError:
                raise
            except DatabaseError as e:
                # Product is stored and stays in its unmatched pool
                logger.warning("auto_link_failed", side=side.value, product_id=product.id, error=e.message)
                link = None
            if link is not None:
                result.equivalence_id = link.id

        return result

    def _log_import(self, summary: ImportSummary, source_filename: Optional[str]) -> None:
        """Record the batch in imports_log; never fails the import."""
        try:
            self.db.table(self.log_table).insert({
                "source_filename": source_filename,
                "side": summary.side.value,
                "supplier": summary.supplier,
                "inserted": summary.inserted,
                "updated": summary.updated,
                "updated_price_changed": summary.updated_price_changed,
                "skipped": summary.skipped,
                "linked": summary.linked,
            }).execute()
        except Exception as log_err:
            logger.warning(
                "failed_to_record_import",
                filename=source_filename,
                error=str(log_err),
            )

    def get_import_log(self, limit: int = 50) -> list[dict]:
        """Most recent import batches first."""
        try:
            result = (
                self.db.table(self.log_table)
                .select("*")
                .order("imported_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("get_import_log_failed", error=str(e))
            raise DatabaseError("select", str(e))

        return result.data


# Singleton instance for convenience
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create ImportService instance."""
    global _import_service
    if _import_service is None:
        _import_service = ImportService()
    return _import_service
