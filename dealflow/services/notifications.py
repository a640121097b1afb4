"""
Notification Service: persistence, read state and real-time fan-out.

A notification is stored once and delivered to each recipient's
``user_<id>`` room as ``notification:new`` together with that
recipient's unread count. Read receipts are one row per user, so marking
as read is idempotent.
"""

import logging
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models import (
    Notification,
    NotificationEntityType,
    NotificationRead,
    NotificationType,
    User,
    notification_recipients,
    utcnow,
)
from ..realtime import EventOutbox
from ..schemas import NotificationResponse, dump_event

logger = logging.getLogger(__name__)


def _read_by(user_id: UUID):
    return (
        select(NotificationRead.id)
        .where(
            NotificationRead.notification_id == Notification.id,
            NotificationRead.user_id == user_id,
        )
        .exists()
    )


def _addressed_to(user_id: UUID):
    return Notification.id.in_(
        select(notification_recipients.c.notification_id).where(
            notification_recipients.c.user_id == user_id
        )
    )


class NotificationService:
    """Service for notification persistence and delivery."""

    def __init__(self, session: AsyncSession, outbox: EventOutbox | None = None):
        self.session = session
        self.outbox = outbox if outbox is not None else EventOutbox()

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_notification(
        self,
        *,
        type: NotificationType,
        title: str,
        message: str,
        recipients: Iterable[UUID | None],
        entity_type: NotificationEntityType | None = None,
        entity_id: UUID | None = None,
        triggered_by: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Persist a notification and queue one ``notification:new`` per recipient.

        Duplicate and empty recipient ids are dropped; unknown user ids are
        skipped with a warning.
        """
        recipient_ids = list(dict.fromkeys(r for r in recipients if r is not None))

        users: list[User] = []
        if recipient_ids:
            result = await self.session.execute(select(User).where(User.id.in_(recipient_ids)))
            by_id = {user.id: user for user in result.scalars()}
            missing = [str(r) for r in recipient_ids if r not in by_id]
            if missing:
                logger.warning(f"Skipping unknown notification recipients: {missing}")
            users = [by_id[r] for r in recipient_ids if r in by_id]

        trigger = await self.session.get(User, triggered_by) if triggered_by else None

        notification = Notification(
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            triggered_by_id=trigger.id if trigger else None,
            triggered_by=trigger,
            meta=metadata or {},
            created_at=utcnow(),
            recipients=users,
            read_receipts=[],
        )
        self.session.add(notification)
        await self.session.flush()

        payload = dump_event(NotificationResponse.model_validate(notification))
        for user in users:
            unread_count = await self.get_unread_count(user.id)
            self.outbox.to_user(
                user.id,
                "notification:new",
                {"notification": payload, "unreadCount": unread_count},
            )

        logger.info(
            f"Notification {notification.id} ({type.value}) created for {len(users)} recipient(s)"
        )
        return notification

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_notification(self, notification_id: UUID) -> Notification:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.id == notification_id)
            .execution_options(populate_existing=True)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    async def list_notifications(
        self,
        user_id: UUID,
        type: NotificationType | None = None,
        is_read: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Notification], int]:
        """Notifications addressed to ``user_id``, newest first."""
        stmt = select(Notification).where(_addressed_to(user_id))
        if type is not None:
            stmt = stmt.where(Notification.type == type)
        if is_read is True:
            stmt = stmt.where(_read_by(user_id))
        elif is_read is False:
            stmt = stmt.where(~_read_by(user_id))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(Notification.title.ilike(pattern), Notification.message.ilike(pattern)))

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))

        result = await self.session.execute(
            stmt.order_by(Notification.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars()), total or 0

    async def get_unread_count(self, user_id: UUID) -> int:
        count = await self.session.scalar(
            select(func.count(Notification.id)).where(_addressed_to(user_id), ~_read_by(user_id))
        )
        return count or 0

    # =========================================================================
    # READ STATE
    # =========================================================================

    async def mark_as_read(self, notification_id: UUID, user_id: UUID) -> Notification:
        """Record a read receipt. Only recipients may mark a notification read."""
        result = await self.session.execute(
            select(Notification).where(Notification.id == notification_id, _addressed_to(user_id))
            .execution_options(populate_existing=True)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found or access denied")

        if notification.is_read_by(user_id):
            return notification

        try:
            async with self.session.begin_nested():
                notification.read_receipts.append(
                    NotificationRead(user_id=user_id, read_at=utcnow())
                )
                await self.session.flush()
        except IntegrityError:
            # Read concurrently by another request for the same user
            logger.info(f"Notification {notification_id} already read by {user_id}")
            return await self.get_notification(notification_id)

        self.outbox.to_user(
            user_id,
            "notification:read",
            {"notificationId": str(notification_id), "userId": str(user_id)},
        )
        return notification

    async def mark_all_as_read(self, user_id: UUID) -> int:
        """Mark every unread notification for the user. Returns the count modified."""
        result = await self.session.execute(
            select(Notification.id).where(_addressed_to(user_id), ~_read_by(user_id))
        )
        unread_ids = list(result.scalars())

        now = utcnow()
        self.session.add_all(
            [NotificationRead(notification_id=nid, user_id=user_id, read_at=now) for nid in unread_ids]
        )
        await self.session.flush()

        self.outbox.to_user(
            user_id,
            "notification:allRead",
            {"userId": str(user_id), "count": len(unread_ids)},
        )
        logger.info(f"Marked {len(unread_ids)} notification(s) read for user {user_id}")
        return len(unread_ids)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_notification(self, notification_id: UUID) -> Notification:
        notification = await self.get_notification(notification_id)
        await self.session.delete(notification)
        await self.session.flush()
        logger.info(f"Notification {notification_id} deleted")
        return notification
