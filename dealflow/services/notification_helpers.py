"""Notification helpers for lead, task and deal events.

Each helper runs inside a savepoint and never raises: a failed
notification is logged and the caller's transaction carries on.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    ADMIN_ROLES,
    DealCloseRequest,
    Lead,
    Notification,
    NotificationEntityType,
    NotificationType,
    Task,
    User,
)
from .notifications import NotificationService

logger = logging.getLogger(__name__)


async def admin_user_ids(session: AsyncSession) -> list[UUID]:
    """Ids of all active admin and super_admin users."""
    result = await session.execute(
        select(User.id).where(User.role.in_(ADMIN_ROLES), User.is_active.is_(True))
    )
    return list(result.scalars())


async def notify_safely(service: NotificationService, **kwargs: Any) -> Notification | None:
    """Create a notification in a savepoint; log and swallow failures."""
    try:
        async with service.session.begin_nested():
            return await service.create_notification(**kwargs)
    except Exception:
        logger.exception(f"Failed to create notification {kwargs.get('title')!r}")
        return None


# =============================================================================
# LEADS
# =============================================================================


async def notify_lead_created(
    service: NotificationService,
    lead: Lead,
    actor_id: UUID,
) -> Notification | None:
    admins = await admin_user_ids(service.session)
    return await notify_safely(
        service,
        type=NotificationType.LEAD,
        title="New Lead Created",
        message=f'A new lead "{lead.title}" has been created',
        recipients=[actor_id, lead.assigned_to_id, *admins],
        entity_type=NotificationEntityType.LEAD,
        entity_id=lead.id,
        triggered_by=actor_id,
        metadata={"leadId": str(lead.id), "leadTitle": lead.title},
    )


async def notify_lead_assigned(
    service: NotificationService,
    lead: Lead,
    assignee_id: UUID,
    actor_id: UUID,
) -> Notification | None:
    return await notify_safely(
        service,
        type=NotificationType.LEAD,
        title="Lead Assigned to You",
        message=f'Lead "{lead.title}" has been assigned to you',
        recipients=[assignee_id],
        entity_type=NotificationEntityType.LEAD,
        entity_id=lead.id,
        triggered_by=actor_id,
        metadata={"leadId": str(lead.id), "leadTitle": lead.title, "assignedTo": str(assignee_id)},
    )


# =============================================================================
# TASKS
# =============================================================================


async def notify_task_created(
    service: NotificationService,
    task: Task,
    actor_id: UUID,
) -> Notification | None:
    admins = await admin_user_ids(service.session)
    return await notify_safely(
        service,
        type=NotificationType.TASK,
        title="New Task Created",
        message=f'A new task "{task.title}" has been created',
        recipients=[actor_id, task.assign_to_id, *admins],
        entity_type=NotificationEntityType.TASK,
        entity_id=task.id,
        triggered_by=actor_id,
        metadata={"taskId": str(task.id), "taskTitle": task.title},
    )


async def notify_task_assigned(
    service: NotificationService,
    task: Task,
    assignee_id: UUID,
    actor_id: UUID,
) -> Notification | None:
    return await notify_safely(
        service,
        type=NotificationType.TASK,
        title="Task Assigned to You",
        message=f'Task "{task.title}" has been assigned to you',
        recipients=[assignee_id],
        entity_type=NotificationEntityType.TASK,
        entity_id=task.id,
        triggered_by=actor_id,
        metadata={"taskId": str(task.id), "taskTitle": task.title, "assignedTo": str(assignee_id)},
    )


# =============================================================================
# DEAL CLOSE REQUESTS
# =============================================================================


async def notify_close_requested(
    service: NotificationService,
    lead: Lead,
    request: DealCloseRequest,
    representative: User,
) -> Notification | None:
    admins = await admin_user_ids(service.session)
    return await notify_safely(
        service,
        type=NotificationType.LEAD,
        title="Deal Close Requested",
        message=f'{representative.name} requested to close the deal "{lead.title}"',
        recipients=admins,
        entity_type=NotificationEntityType.LEAD,
        entity_id=lead.id,
        triggered_by=representative.id,
        metadata={"leadId": str(lead.id), "requestId": str(request.id)},
    )


async def notify_close_approved(
    service: NotificationService,
    lead: Lead,
    request: DealCloseRequest,
    admin_id: UUID,
    incentive_label: str,
) -> Notification | None:
    return await notify_safely(
        service,
        type=NotificationType.LEAD,
        title="Deal Close Approved",
        message=f'Your close request for "{lead.title}" was approved. Incentive: {incentive_label}',
        recipients=[request.representative_id],
        entity_type=NotificationEntityType.LEAD,
        entity_id=lead.id,
        triggered_by=admin_id,
        metadata={"leadId": str(lead.id), "requestId": str(request.id)},
    )


async def notify_close_rejected(
    service: NotificationService,
    lead: Lead,
    request: DealCloseRequest,
    admin_id: UUID,
    reason: str,
) -> Notification | None:
    return await notify_safely(
        service,
        type=NotificationType.LEAD,
        title="Deal Close Rejected",
        message=f'Your close request for "{lead.title}" was rejected. Reason: {reason}',
        recipients=[request.representative_id],
        entity_type=NotificationEntityType.LEAD,
        entity_id=lead.id,
        triggered_by=admin_id,
        metadata={"leadId": str(lead.id), "requestId": str(request.id), "rejectionReason": reason},
    )
