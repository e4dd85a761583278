"""
Price list import API routes.

Upload flow: preview (detect header row + mapping) → confirm mapping → import.
"""

from fastapi import APIRouter, UploadFile, File, Form, Query
from fastapi.responses import JSONResponse
from io import BytesIO
from datetime import date
from typing import Optional
import structlog

from models.catalog import CatalogSide, CompanyType
from models.ingest import (
    HeaderMapping,
    ImportPreview,
    ImportRequest,
    ImportSummary,
    MappingTemplate,
)
from services.import_service import get_import_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ROUTES
# ===================

@router.post("/preview", response_model=ImportPreview)
async def preview_import(
    file: UploadFile = File(..., description="Price list (.xlsx, .xls or .csv)"),
    supplier_hint: Optional[str] = Form(None, description="Supplier name or internal catalog name"),
    side: Optional[CatalogSide] = Form(None, description="Target catalog"),
    header_row: Optional[int] = Form(None, ge=1, description="Override the suggested header row"),
):
    """
    Read an uploaded sheet and propose header row and column mapping.

    Raises:
        422: File unreadable or empty
    """
    logger.info(
        "import_preview_started",
        filename=file.filename,
        content_type=file.content_type
    )

    try:
        content = await file.read()
        service = get_import_service()
        return service.preview(
            BytesIO(content),
            filename=file.filename,
            supplier_hint=supplier_hint,
            side=side,
            header_row=header_row,
        )

    except Exception as e:
        return handle_error(e)


@router.post("", response_model=ImportSummary)
async def import_price_list(
    file: UploadFile = File(..., description="Price list (.xlsx, .xls or .csv)"),
    supplier_hint: str = Form(..., min_length=1, description="Supplier name or internal catalog name"),
    name_column: str = Form(..., description="Raw header holding the product name"),
    price_column: str = Form(..., description="Raw header holding the final price"),
    code_column: Optional[str] = Form(None, description="Raw header holding the product code"),
    header_row: int = Form(1, ge=1, description="1-based header row"),
    side: Optional[CatalogSide] = Form(None, description="Inferred from supplier_hint when omitted"),
    company_type: Optional[CompanyType] = Form(None),
    effective_date: Optional[date] = Form(None),
    save_template: bool = Form(False, description="Remember this mapping for the supplier"),
):
    """
    Import a price list with a confirmed column mapping.

    Every row is upserted on its own; malformed rows are counted as
    skipped and listed under issues.

    Raises:
        422: File unreadable, header row out of range or mapping incomplete
    """
    logger.info(
        "import_upload_started",
        filename=file.filename,
        supplier_hint=supplier_hint,
        side=side.value if side else None
    )

    try:
        content = await file.read()

        request = ImportRequest(
            supplier_hint=supplier_hint,
            side=side,
            header_row=header_row,
            mapping=HeaderMapping(name=name_column, code=code_column or None, price=price_column),
            company_type=company_type,
            effective_date=effective_date,
            source_filename=file.filename,
            save_template=save_template,
        )

        service = get_import_service()
        return service.import_file(BytesIO(content), request)

    except Exception as e:
        return handle_error(e)


@router.get("/log")
async def list_imports(limit: int = Query(50, ge=1, le=500)):
    """Recent import batches, newest first."""
    try:
        service = get_import_service()
        return {"data": service.get_import_log(limit=limit)}

    except Exception as e:
        return handle_error(e)


@router.get("/mappings/{supplier}", response_model=MappingTemplate)
async def get_mapping_template(supplier: str):
    """
    Saved column mapping for a supplier.

    Raises:
        404: No mapping saved
    """
    try:
        service = get_import_service()
        return service.get_template(supplier)

    except Exception as e:
        return handle_error(e)


@router.put("/mappings/{supplier}", response_model=MappingTemplate)
async def save_mapping_template(
    supplier: str,
    mapping: HeaderMapping,
    header_row: int = Query(1, ge=1),
):
    """
    Create or replace the saved column mapping for a supplier.

    Raises:
        422: Mapping lacks name or price
    """
    try:
        service = get_import_service()
        return service.save_template(supplier, header_row, mapping)

    except Exception as e:
        return handle_error(e)
