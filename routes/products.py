"""
Catalog product API routes.

Both catalogs share these endpoints; {side} is "external" or "internal".
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.catalog import (
    CatalogSide,
    ProductEntry,
    ProductCheckRequest,
    ProductSearchField,
)
from models.ingest import RowResult
from services.catalog_service import get_catalog_service
from services.equivalence_service import get_equivalence_service
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

@router.post("/check")
async def check_product(data: ProductCheckRequest):
    """
    Check whether a product already exists before entering it.

    Returns {"exists": bool, "product": ... | null}.
    """
    try:
        service = get_catalog_service()
        product = service.find_existing(data)
        return {
            "exists": product is not None,
            "product": product.model_dump(mode="json") if product else None
        }

    except Exception as e:
        return handle_error(e)


@router.get("/{side}")
async def list_products(
    side: CatalogSide,
    supplier: Optional[str] = Query(None, description="External catalog only")
):
    """List one catalog ordered by name."""
    try:
        service = get_catalog_service()
        products = service.get_all(side, supplier=supplier)
        return {"data": [p.model_dump(mode="json") for p in products], "total": len(products)}

    except Exception as e:
        return handle_error(e)


@router.get("/{side}/search")
async def search_products(
    side: CatalogSide,
    q: str = Query(..., min_length=1, description="Text to look for"),
    by: ProductSearchField = Query(ProductSearchField.NAME, description="Field to search"),
    limit: int = Query(50, ge=1, le=500)
):
    """
    Search a catalog by code, name or supplier.

    Raises:
        422: Supplier search on the internal catalog
    """
    try:
        service = get_catalog_service()
        products = service.search(side, by, q, limit=limit)
        return {"data": [p.model_dump(mode="json") for p in products], "total": len(products)}

    except Exception as e:
        return handle_error(e)


@router.post("/{side}", response_model=RowResult)
async def enter_product(side: CatalogSide, data: ProductEntry):
    """
    Enter a product by hand.

    Goes through the same upsert and automatic matching as an import.

    Raises:
        422: Missing supplier for an external product
    """
    try:
        service = get_import_service()
        return service.import_entry(side, data)

    except Exception as e:
        return handle_error(e)


@router.delete("/{side}/{product_id}")
async def delete_product(side: CatalogSide, product_id: int):
    """
    Delete a product.

    A linked counterpart is returned to its unmatched pool.

    Raises:
        404: Product not found
    """
    try:
        service = get_equivalence_service()
        return service.delete_product(side, product_id)

    except Exception as e:
        return handle_error(e)
