"""Database models for Dealflow."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    ADMIN_ROLES,
    ActivityType,
    CloseRequestStatus,
    Currency,
    DealCloseRequest,
    DealStatus,
    Lead,
    LeadActivity,
    LeadHistory,
    LeadHistoryAction,
    Notification,
    NotificationEntityType,
    NotificationRead,
    NotificationType,
    Stage,
    StageOutcome,
    Task,
    TaskStatus,
    User,
    UserRole,
    notification_recipients,
    user_converted_leads,
)

__all__ = [
    # Base
    "Base",
    "JSONType",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utcnow",
    # Enums
    "ADMIN_ROLES",
    "ActivityType",
    "CloseRequestStatus",
    "Currency",
    "DealStatus",
    "LeadHistoryAction",
    "NotificationEntityType",
    "NotificationType",
    "StageOutcome",
    "TaskStatus",
    "UserRole",
    # Models
    "DealCloseRequest",
    "Lead",
    "LeadActivity",
    "LeadHistory",
    "Notification",
    "NotificationRead",
    "Stage",
    "Task",
    "User",
    # Association tables
    "notification_recipients",
    "user_converted_leads",
]
