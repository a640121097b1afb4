"""Deal-close-request workflow schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from ..models import CloseRequestStatus
from .base import DealflowBaseModel, StageRef, TimestampedResponse, UserRef
from .leads import LeadRef


class CloseRequestCreate(DealflowBaseModel):
    lead_id: UUID
    notes: str | None = Field(default=None, max_length=2000)


class MarkLostRequest(DealflowBaseModel):
    lead_id: UUID
    lost_reason: str | None = None


class ApproveCloseRequest(DealflowBaseModel):
    incentive_amount: Decimal | None = None


class RejectCloseRequest(DealflowBaseModel):
    rejection_reason: str | None = None


class DealCloseRequestResponse(TimestampedResponse):
    id: UUID
    lead: LeadRef
    representative: UserRef
    requested_at: datetime
    status: CloseRequestStatus
    approved_by: UserRef | None = None
    approved_at: datetime | None = None
    rejected_by: UserRef | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    incentive_amount: float | None = None
    incentive_currency: str
    notes: str | None = None
    previous_stage: StageRef | None = None
