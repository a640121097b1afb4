"""API routes for notifications."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ..core import AdminDep, CurrentUserDep, SessionDep
from ..jobs import check_activity_reminders, check_overdue_activities
from ..models import NotificationType
from ..realtime import GatewayDep, OutboxDep, commit_and_publish
from ..schemas import (
    ApiResponse,
    MarkAllReadResponse,
    NotificationResponse,
    PageMeta,
    ReminderCheckResponse,
    UnreadCountResponse,
)
from ..services import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service(session: SessionDep, outbox: OutboxDep) -> NotificationService:
    return NotificationService(session, outbox)


NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=ApiResponse[list[NotificationResponse]])
async def list_notifications(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    notification_type: NotificationType | None = Query(None, alias="type"),
    is_read: bool | None = Query(None, alias="isRead"),
    search: str | None = Query(None, alias="searchTerm"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    """Notifications addressed to the caller, newest first."""
    notifications, total = await service.list_notifications(
        current_user.id,
        type=notification_type,
        is_read=is_read,
        search=search,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        message="Notifications retrieved successfully",
        meta=PageMeta.create(total=total, page=page, limit=limit),
        data=[NotificationResponse.for_viewer(n, current_user.id) for n in notifications],
    )


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def unread_count(current_user: CurrentUserDep, service: NotificationServiceDep):
    count = await service.get_unread_count(current_user.id)
    return ApiResponse(
        message="Unread count retrieved successfully",
        data=UnreadCountResponse(unread_count=count),
    )


@router.patch("/mark-all-read", response_model=ApiResponse[MarkAllReadResponse])
async def mark_all_read(
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    gateway: GatewayDep,
):
    count = await service.mark_all_as_read(current_user.id)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="All notifications marked as read",
        data=MarkAllReadResponse(modified_count=count),
    )


@router.post("/trigger-reminder-check", response_model=ApiResponse[ReminderCheckResponse])
async def trigger_reminder_check(
    current_user: AdminDep,
    session: SessionDep,
    outbox: OutboxDep,
    gateway: GatewayDep,
):
    """Run the reminder and overdue scans now instead of waiting for the schedule."""
    reminders = await check_activity_reminders(session, outbox)
    overdue = await check_overdue_activities(session, outbox)
    await commit_and_publish(session, outbox, gateway)
    return ApiResponse(
        message="Activity reminder check completed",
        data=ReminderCheckResponse(reminders_sent=reminders, overdue_notified=overdue),
    )


@router.patch("/{notification_id}/mark-read", response_model=ApiResponse[NotificationResponse])
async def mark_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    service: NotificationServiceDep,
    gateway: GatewayDep,
):
    notification = await service.mark_as_read(notification_id, current_user.id)
    await commit_and_publish(service.session, service.outbox, gateway)
    return ApiResponse(
        message="Notification marked as read",
        data=NotificationResponse.for_viewer(notification, current_user.id),
    )


@router.delete("/{notification_id}", response_model=ApiResponse[dict])
async def delete_notification(
    notification_id: UUID,
    current_user: AdminDep,
    service: NotificationServiceDep,
):
    await service.delete_notification(notification_id)
    return ApiResponse(message="Notification deleted successfully", data={"id": str(notification_id)})
