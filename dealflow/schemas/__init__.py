"""Pydantic schemas for API requests, responses and event payloads."""

from .base import (
    ApiResponse,
    DealflowBaseModel,
    ErrorResponse,
    PageMeta,
    PaginationParams,
    StageRef,
    UserRef,
    dump_event,
)
from .deal_close_requests import (
    ApproveCloseRequest,
    CloseRequestCreate,
    DealCloseRequestResponse,
    MarkLostRequest,
    RejectCloseRequest,
)
from .leads import (
    ActivityComplete,
    ActivityCreate,
    ActivityResponse,
    LeadCreate,
    LeadDetailResponse,
    LeadHistoryResponse,
    LeadNoteCreate,
    LeadRef,
    LeadResponse,
    LeadUpdate,
)
from .notifications import (
    MarkAllReadResponse,
    NotificationResponse,
    ReadReceiptResponse,
    ReminderCheckResponse,
    UnreadCountResponse,
)
from .stages import StageCreate, StageReorderRequest, StageResponse, StageUpdate
from .tasks import TaskCreate, TaskResponse, TaskUpdate

__all__ = [
    # Base
    "ApiResponse",
    "DealflowBaseModel",
    "ErrorResponse",
    "PageMeta",
    "PaginationParams",
    "StageRef",
    "UserRef",
    "dump_event",
    # Stages
    "StageCreate",
    "StageReorderRequest",
    "StageResponse",
    "StageUpdate",
    # Leads
    "ActivityComplete",
    "ActivityCreate",
    "ActivityResponse",
    "LeadCreate",
    "LeadDetailResponse",
    "LeadHistoryResponse",
    "LeadNoteCreate",
    "LeadRef",
    "LeadResponse",
    "LeadUpdate",
    # Deal close requests
    "ApproveCloseRequest",
    "CloseRequestCreate",
    "DealCloseRequestResponse",
    "MarkLostRequest",
    "RejectCloseRequest",
    # Notifications
    "MarkAllReadResponse",
    "NotificationResponse",
    "ReadReceiptResponse",
    "ReminderCheckResponse",
    "UnreadCountResponse",
    # Tasks
    "TaskCreate",
    "TaskResponse",
    "TaskUpdate",
]
