"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, SortDirection
from models.catalog import (
    CatalogSide,
    CompanyType,
    ExternalProductResponse,
    InternalProductResponse,
    CatalogProduct,
    ProductEntry,
    ProductCheckRequest,
    ProductSearchField,
    UnmatchedProduct,
)
from models.ingest import (
    CanonicalField,
    HeaderMapping,
    UpsertOutcome,
    RowResult,
    RowIssue,
    ImportSummary,
    ImportRequest,
    ImportPreview,
    MappingTemplate,
)
from models.equivalence import (
    MatchCriterion,
    EquivalenceResponse,
    ManualLinkRequest,
    EquivalenceView,
)
from models.comparison import PriceComparison

__all__ = [
    # Base
    "BaseSchema",
    "SortDirection",

    # Catalog
    "CatalogSide",
    "CompanyType",
    "ExternalProductResponse",
    "InternalProductResponse",
    "CatalogProduct",
    "ProductEntry",
    "ProductCheckRequest",
    "ProductSearchField",
    "UnmatchedProduct",

    # Import
    "CanonicalField",
    "HeaderMapping",
    "UpsertOutcome",
    "RowResult",
    "RowIssue",
    "ImportSummary",
    "ImportRequest",
    "ImportPreview",
    "MappingTemplate",

    # Equivalence
    "MatchCriterion",
    "EquivalenceResponse",
    "ManualLinkRequest",
    "EquivalenceView",

    # Comparison
    "PriceComparison",
]
