"""Task schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import TaskStatus
from .base import DealflowBaseModel, TimestampedResponse, UserRef
from .leads import LeadRef


class TaskCreate(DealflowBaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    lead_id: UUID | None = None
    assign_to_id: UUID | None = None
    status: TaskStatus = TaskStatus.PENDING
    due_date: datetime | None = None
    performance_point: int = Field(default=0, ge=0)


class TaskUpdate(DealflowBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    lead_id: UUID | None = None
    assign_to_id: UUID | None = None
    status: TaskStatus | None = None
    due_date: datetime | None = None
    performance_point: int | None = Field(default=None, ge=0)


class TaskResponse(TimestampedResponse):
    id: UUID
    title: str
    description: str | None = None
    lead: LeadRef | None = None
    assign_to: UserRef | None = None
    created_by: UserRef | None = None
    status: TaskStatus
    due_date: datetime | None = None
    completed_at: datetime | None = None
    performance_point: int
