"""
Base schemas for all models.
"""

from pydantic import BaseModel, ConfigDict
from enum import Enum


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Features:
        - Auto-trim whitespace from strings
        - Validate on attribute assignment
        - Allow ORM objects (from_attributes)
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


class SortDirection(str, Enum):
    """Sort direction for list endpoints."""
    ASC = "asc"
    DESC = "desc"

    @property
    def descending(self) -> bool:
        return self is SortDirection.DESC
