"""
Business logic services.

Each service handles one domain area.
"""

from services.catalog_service import CatalogService, get_catalog_service
from services.relation_service import RelationService, get_relation_service
from services.equivalence_service import EquivalenceService, get_equivalence_service
from services.comparison_service import (
    ComparisonService,
    get_comparison_service,
    price_difference_percent,
)
from services.import_service import ImportService, get_import_service

__all__ = [
    "CatalogService",
    "get_catalog_service",
    "RelationService",
    "get_relation_service",
    "EquivalenceService",
    "get_equivalence_service",
    "ComparisonService",
    "get_comparison_service",
    "price_difference_percent",
    "ImportService",
    "get_import_service",
]
