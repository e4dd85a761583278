"""
Price comparison API routes.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from datetime import date
from typing import Optional
import structlog

from services.comparison_service import get_comparison_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
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


@router.get("")
async def list_price_comparisons(
    search: Optional[str] = Query(None, description="Free text over names, codes and supplier"),
    date_from: Optional[date] = Query(None, description="External effective date from (inclusive)"),
    date_to: Optional[date] = Query(None, description="External effective date to (inclusive)")
):
    """
    Linked pairs with their percent price difference.

    price_difference_percent is null when not applicable.

    Raises:
        422: date_from after date_to
    """
    try:
        service = get_comparison_service()
        rows = service.list(search=search, date_from=date_from, date_to=date_to)
        return {
            "data": [r.model_dump(mode="json") for r in rows],
            "total": len(rows),
            "comparable": sum(1 for r in rows if r.comparable)
        }

    except Exception as e:
        return handle_error(e)
