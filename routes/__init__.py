"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.imports import router as imports_router
from routes.products import router as products_router
from routes.equivalences import router as equivalences_router
from routes.comparisons import router as comparisons_router

__all__ = [
    "imports_router",
    "products_router",
    "equivalences_router",
    "comparisons_router",
]
