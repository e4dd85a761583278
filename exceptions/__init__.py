"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DatabaseError,
    IntegrityError,

    # Products
    ProductNotFoundError,
    MissingFieldError,
    InvalidPriceError,

    # Equivalences
    EquivalenceNotFoundError,
    ProductAlreadyLinkedError,

    # Imports
    ExcelParseError,
    ImportUnreadableError,
    MappingTemplateNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DatabaseError",
    "IntegrityError",

    # Products
    "ProductNotFoundError",
    "MissingFieldError",
    "InvalidPriceError",

    # Equivalences
    "EquivalenceNotFoundError",
    "ProductAlreadyLinkedError",

    # Imports
    "ExcelParseError",
    "ImportUnreadableError",
    "MappingTemplateNotFoundError",
]
