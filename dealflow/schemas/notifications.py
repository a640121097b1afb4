"""Notification schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, Field, field_validator

from ..models import Notification, NotificationEntityType, NotificationType
from .base import DealflowBaseModel, UserRef


class ReadReceiptResponse(DealflowBaseModel):
    user_id: UUID
    read_at: datetime


class NotificationResponse(DealflowBaseModel):
    id: UUID
    type: NotificationType
    title: str
    message: str
    entity_type: NotificationEntityType | None = None
    entity_id: UUID | None = None
    triggered_by: UserRef | None = None
    recipients: list[UUID] = Field(default_factory=list)
    read_by: list[ReadReceiptResponse] = Field(
        default_factory=list,
        validation_alias=AliasChoices("read_receipts", "readBy", "read_by"),
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("meta", "metadata"),
    )
    created_at: datetime
    is_read: bool = False

    @field_validator("recipients", mode="before")
    @classmethod
    def _recipient_ids(cls, value: Any) -> Any:
        return [getattr(item, "id", item) for item in value or []]

    @classmethod
    def for_viewer(cls, notification: Notification, user_id: UUID) -> "NotificationResponse":
        """Response with ``isRead`` resolved for one user."""
        response = cls.model_validate(notification)
        response.is_read = notification.is_read_by(user_id)
        return response


class UnreadCountResponse(DealflowBaseModel):
    unread_count: int


class MarkAllReadResponse(DealflowBaseModel):
    modified_count: int


class ReminderCheckResponse(DealflowBaseModel):
    reminders_sent: int
    overdue_notified: int
