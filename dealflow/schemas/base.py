"""Base schemas and common types for the Dealflow API.

JSON bodies use camelCase keys; Python code uses snake_case attributes.
"""

from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import StageOutcome, UserRole

T = TypeVar("T")


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class DealflowBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        alias_generator=to_camel,
    )


def dump_event(model: BaseModel) -> dict[str, Any]:
    """Serialize a schema the same way responses are serialized."""
    return model.model_dump(mode="json", by_alias=True)


# =============================================================================
# ENVELOPE
# =============================================================================


class PageMeta(DealflowBaseModel):
    """Pagination metadata."""

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def create(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit if limit else 0,
        )


class PaginationParams(DealflowBaseModel):
    """Query parameters for pagination."""

    page: int = Field(default=1, ge=1, description="Page number (1-indexed)")
    limit: int = Field(default=10, ge=1, le=100, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class ApiResponse(DealflowBaseModel, Generic[T]):
    """Standard success envelope."""

    success: bool = True
    message: str
    meta: PageMeta | None = None
    data: T | None = None


class ErrorResponse(DealflowBaseModel):
    """Standard error response format."""

    success: bool = False
    message: str
    errors: list[dict[str, Any]] | None = None


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class UserRef(DealflowBaseModel):
    """Minimal user reference for embedding in responses."""

    id: UUID
    name: str
    email: str
    role: UserRole


class StageRef(DealflowBaseModel):
    """Minimal stage reference."""

    id: UUID
    title: str
    position: int
    is_terminal: StageOutcome | None = None


class TimestampedResponse(DealflowBaseModel):
    created_at: datetime
    updated_at: datetime | None = None
