"""Pipeline stage schemas."""

from uuid import UUID

from pydantic import Field

from ..models import StageOutcome
from .base import DealflowBaseModel, TimestampedResponse, UserRef


class StageCreate(DealflowBaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    is_active: bool = True
    is_terminal: StageOutcome | None = None


class StageUpdate(DealflowBaseModel):
    """Partial update. Position changes only through reorder."""

    title: str | None = Field(default=None, min_length=1, max_length=120)
    is_active: bool | None = None
    is_terminal: StageOutcome | None = None


class StageReorderRequest(DealflowBaseModel):
    source_index: int
    destination_index: int


class StageResponse(TimestampedResponse):
    id: UUID
    title: str
    position: int
    is_active: bool
    is_terminal: StageOutcome | None = None
    created_by: UserRef | None = None
