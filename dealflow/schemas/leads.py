"""Lead, lead history and lead activity schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import EmailStr, Field

from ..models import ActivityType, Currency, DealStatus
from .base import DealflowBaseModel, StageRef, TimestampedResponse, UserRef


# =============================================================================
# REQUESTS
# =============================================================================


class LeadCreate(DealflowBaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    source: str | None = Field(default=None, max_length=100)
    stage_id: UUID | None = None
    assigned_to_id: UUID | None = None
    budget: Decimal | None = Field(default=None, ge=0)
    currency: Currency = Currency.USD
    quick_note: str | None = None
    follow_up_date: datetime | None = None
    attachments: list[str] = Field(default_factory=list)


class LeadUpdate(DealflowBaseModel):
    """Partial update; only fields present in the body are applied."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    source: str | None = Field(default=None, max_length=100)
    stage_id: UUID | None = None
    assigned_to_id: UUID | None = None
    budget: Decimal | None = Field(default=None, ge=0)
    currency: Currency | None = None
    quick_note: str | None = None
    follow_up_date: datetime | None = None
    attachments: list[str] | None = None


class LeadNoteCreate(DealflowBaseModel):
    text: str = Field(..., min_length=1)


class ActivityCreate(DealflowBaseModel):
    type: ActivityType
    date: datetime
    note: str | None = None
    meeting_type: Literal["online", "offline"] | None = None
    meeting_link: str | None = Field(default=None, max_length=500)
    meeting_location: str | None = Field(default=None, max_length=255)


class ActivityComplete(DealflowBaseModel):
    feedback: str | None = None


# =============================================================================
# RESPONSES
# =============================================================================


class LeadHistoryResponse(DealflowBaseModel):
    id: UUID
    action: str
    field: str | None = None
    old_value: Any = None
    new_value: Any = None
    changed_by: UserRef | None = None
    timestamp: datetime
    description: str | None = None
    overdue_notification_sent: bool = False


class ActivityResponse(TimestampedResponse):
    id: UUID
    lead_id: UUID
    type: ActivityType
    date: datetime
    added_by_id: UUID | None = None
    note: str | None = None
    meeting_type: str | None = None
    meeting_link: str | None = None
    meeting_location: str | None = None
    completed: bool
    completed_at: datetime | None = None
    completed_by_id: UUID | None = None
    feedback: str | None = None


class LeadRef(DealflowBaseModel):
    """Minimal lead reference for embedding in responses."""

    id: UUID
    title: str
    name: str
    deal_status: DealStatus
    stage: StageRef | None = None


class LeadResponse(TimestampedResponse):
    id: UUID
    title: str
    name: str
    email: str | None = None
    phone: str | None = None
    source: str | None = None
    stage: StageRef
    assigned_to: UserRef | None = None
    created_by: UserRef | None = None
    budget: float | None = None
    currency: Currency
    attachments: list[Any] = Field(default_factory=list)
    notes: list[dict[str, Any]] = Field(default_factory=list)
    quick_note: str | None = None
    follow_up_date: datetime | None = None
    deal_status: DealStatus
    closing_requested_at: datetime | None = None
    closed_at: datetime | None = None
    closed_by: UserRef | None = None
    lost_reason: str | None = None
    deal_rejection_reason: str | None = None


class LeadDetailResponse(LeadResponse):
    history: list[LeadHistoryResponse] = Field(default_factory=list)
    activities: list[ActivityResponse] = Field(default_factory=list)
