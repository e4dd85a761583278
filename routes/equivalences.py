"""
Equivalence API routes: linked pairs, manual linking and unmatched pools.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.base import SortDirection
from models.catalog import CatalogSide
from models.equivalence import EquivalenceResponse, ManualLinkRequest
from services.relation_service import get_relation_service
from services.equivalence_service import get_equivalence_service
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

@router.get("")
async def list_equivalences(
    search: Optional[str] = Query(None, description="Free text over both products"),
    sort_by: str = Query("created_at", description="Field to sort by"),
    direction: SortDirection = Query(SortDirection.DESC)
):
    """List linked pairs joined with both products."""
    try:
        service = get_relation_service()
        views = service.list(search=search, sort_by=sort_by, descending=direction.descending)
        return {"data": [v.model_dump(mode="json") for v in views], "total": len(views)}

    except Exception as e:
        return handle_error(e)


@router.post("/manual", response_model=EquivalenceResponse, status_code=201)
async def create_manual_link(data: ManualLinkRequest):
    """
    Link one external and one internal product by hand.

    Raises:
        404: Either product not found
        409: Either product already linked
    """
    try:
        service = get_equivalence_service()
        return service.create_manual_link(data.external_id, data.internal_id)

    except Exception as e:
        return handle_error(e)


@router.delete("/{equivalence_id}", response_model=EquivalenceResponse)
async def delete_equivalence(equivalence_id: int):
    """
    Remove a link; both products return to their unmatched pools.

    Raises:
        404: Equivalence not found
    """
    try:
        service = get_relation_service()
        return service.delete(equivalence_id)

    except Exception as e:
        return handle_error(e)


@router.get("/unmatched/{side}")
async def list_unmatched(
    side: CatalogSide,
    search: Optional[str] = Query(None, description="Free text over code, name and supplier"),
    sort_by: str = Query("effective_date", description="Field to sort by"),
    direction: SortDirection = Query(SortDirection.DESC)
):
    """Products of one catalog without an equivalence."""
    try:
        service = get_equivalence_service()
        pool = service.list_unmatched(
            side,
            search=search,
            sort_by=sort_by,
            descending=direction.descending
        )
        return {"data": [p.model_dump(mode="json") for p in pool], "total": len(pool)}

    except Exception as e:
        return handle_error(e)
