"""
Custom exception classes for the application.

Error kinds:
    ValidationError  - missing/malformed field, row-scoped during imports
    ConflictError    - linking an already linked product
    NotFoundError    - delete/link target absent
    IntegrityError   - storage constraint violated unexpectedly (a bug)
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PRODUCT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


class IntegrityError(AppError):
    """
    Storage constraint violated (500).

    Raised when the database rejects a write that the services believed
    valid, i.e. the unmatched-pool / 1:1 bookkeeping has drifted.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="INTEGRITY_ERROR",
            message=f"Integrity violation during {operation}: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# PRODUCT ERRORS
# ===================

class ProductNotFoundError(NotFoundError):
    """Catalog product not found."""

    def __init__(self, side: str, product_id: Any):
        super().__init__(
            resource=f"{side.capitalize()} product",
            identifier=str(product_id),
            code=f"{side.upper()}_PRODUCT_NOT_FOUND"
        )
        self.details["side"] = side


class MissingFieldError(ValidationError):
    """Required field absent from an imported or entered row."""

    def __init__(self, field: str, row: Optional[int] = None):
        super().__init__(
            code="MISSING_FIELD",
            message=f"Missing required field: {field}",
            details={"field": field, "row": row}
        )


class InvalidPriceError(ValidationError):
    """Price cell that does not parse as a non-negative decimal."""

    def __init__(self, value: Any, row: Optional[int] = None):
        super().__init__(
            code="INVALID_PRICE",
            message=f"Invalid price: {value!r}",
            details={"value": str(value), "row": row}
        )


# ===================
# EQUIVALENCE ERRORS
# ===================

class EquivalenceNotFoundError(NotFoundError):
    """Equivalence (link) not found."""

    def __init__(self, equivalence_id: Any):
        super().__init__(
            resource="Equivalence",
            identifier=str(equivalence_id),
            code="EQUIVALENCE_NOT_FOUND"
        )


class ProductAlreadyLinkedError(ConflictError):
    """One of the products already participates in an equivalence."""

    def __init__(self, external_id: Any, internal_id: Any, reason: Optional[str] = None):
        super().__init__(
            code="PRODUCT_ALREADY_LINKED",
            message="Product is already linked to another product",
            details={
                "external_id": str(external_id),
                "internal_id": str(internal_id),
                "reason": reason,
            }
        )


# ===================
# IMPORT ERRORS
# ===================

class ExcelParseError(ValidationError):
    """Spreadsheet parsing failed."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        code: str = "EXCEL_PARSE_ERROR"
    ):
        super().__init__(
            code=code,
            message=message,
            details=details
        )


class ImportUnreadableError(ExcelParseError):
    """Whole batch cannot be processed (empty matrix, bad header row)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            message=message,
            details=details,
            code="IMPORT_UNREADABLE"
        )


class MappingTemplateNotFoundError(NotFoundError):
    """No saved column mapping for a supplier."""

    def __init__(self, supplier: str):
        super().__init__(
            resource="Mapping template",
            identifier=supplier,
            code="MAPPING_TEMPLATE_NOT_FOUND"
        )
