"""Business logic services."""

from .deal_close_requests import DealCloseRequestService
from .leads import LeadService, can_access_lead
from .lead_records import (
    add_converted_lead,
    converted_lead_ids,
    purge_leads,
    record_history,
    remove_converted_lead,
)
from .notification_helpers import admin_user_ids, notify_safely
from .notifications import NotificationService
from .stages import StageService, stage_reorder_rooms
from .tasks import TaskService

__all__ = [
    "DealCloseRequestService",
    "LeadService",
    "NotificationService",
    "StageService",
    "TaskService",
    "add_converted_lead",
    "admin_user_ids",
    "can_access_lead",
    "converted_lead_ids",
    "notify_safely",
    "purge_leads",
    "record_history",
    "remove_converted_lead",
    "stage_reorder_rooms",
]
