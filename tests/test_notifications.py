"""
Tests for the Notification Service.

These tests verify:
1. CREATE: recipient de-duplication and per-recipient push
2. READ STATE: idempotent receipts, recipient-only access, unread counts
3. HELPERS: a failing notification never breaks the caller
"""

from uuid import uuid4

import pytest

from dealflow.core import NotFoundError
from dealflow.models import NotificationEntityType, NotificationType
from dealflow.realtime import user_room
from dealflow.services import NotificationService, notify_safely


async def _notify(service: NotificationService, *recipients, title: str = "Heads up", **kwargs):
    return await service.create_notification(
        type=kwargs.pop("type", NotificationType.SYSTEM),
        title=title,
        message=kwargs.pop("message", "Something happened"),
        recipients=recipients,
        **kwargs,
    )


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateNotification:
    """Tests for persisting and fanning out notifications."""

    async def test_duplicate_and_empty_recipients_are_dropped(self, session, outbox, admin, rep):
        service = NotificationService(session, outbox)

        notification = await _notify(service, rep.id, None, rep.id, admin.id)

        assert notification.recipient_ids == [rep.id, admin.id]
        assert [event.rooms for event in outbox.events] == [[user_room(rep.id)], [user_room(admin.id)]]

    async def test_unknown_recipients_are_skipped(self, session, rep):
        notification = await _notify(NotificationService(session), rep.id, uuid4())

        assert notification.recipient_ids == [rep.id]

    async def test_push_carries_unread_count(self, session, outbox, rep):
        service = NotificationService(session, outbox)
        await _notify(service, rep.id, title="First")
        await _notify(service, rep.id, title="Second")

        last = outbox.events[-1]
        assert last.event == "notification:new"
        assert last.payload["unreadCount"] == 2
        assert last.payload["notification"]["title"] == "Second"
        assert last.payload["notification"]["isRead"] is False

    async def test_entity_and_metadata_are_stored(self, session, admin, rep):
        lead_id = uuid4()
        notification = await _notify(
            NotificationService(session),
            rep.id,
            type=NotificationType.LEAD,
            entity_type=NotificationEntityType.LEAD,
            entity_id=lead_id,
            triggered_by=admin.id,
            metadata={"leadId": str(lead_id)},
        )

        assert notification.entity_id == lead_id
        assert notification.triggered_by_id == admin.id
        assert notification.meta == {"leadId": str(lead_id)}


# =============================================================================
# TEST: READ STATE
# =============================================================================


class TestReadState:
    """Tests for read receipts and unread counts."""

    async def test_mark_as_read_is_idempotent(self, session, outbox, rep):
        service = NotificationService(session, outbox)
        notification = await _notify(service, rep.id)
        outbox.clear()

        await service.mark_as_read(notification.id, rep.id)
        again = await service.mark_as_read(notification.id, rep.id)

        assert len(again.read_receipts) == 1
        assert [event.event for event in outbox.events] == ["notification:read"]
        assert await service.get_unread_count(rep.id) == 0

    async def test_non_recipient_cannot_mark_read(self, session, rep, other_rep):
        service = NotificationService(session)
        notification = await _notify(service, rep.id)

        with pytest.raises(NotFoundError, match="Notification not found or access denied"):
            await service.mark_as_read(notification.id, other_rep.id)

    async def test_read_state_is_per_user(self, session, rep, other_rep):
        service = NotificationService(session)
        notification = await _notify(service, rep.id, other_rep.id)

        await service.mark_as_read(notification.id, rep.id)

        assert await service.get_unread_count(rep.id) == 0
        assert await service.get_unread_count(other_rep.id) == 1

    async def test_mark_all_as_read(self, session, outbox, rep, other_rep):
        service = NotificationService(session, outbox)
        first = await _notify(service, rep.id)
        await _notify(service, rep.id)
        await _notify(service, other_rep.id)
        await service.mark_as_read(first.id, rep.id)
        outbox.clear()

        modified = await service.mark_all_as_read(rep.id)

        assert modified == 1
        assert await service.get_unread_count(rep.id) == 0
        assert await service.get_unread_count(other_rep.id) == 1
        [event] = outbox.events
        assert event.event == "notification:allRead"
        assert event.payload["count"] == 1

    async def test_list_filters(self, session, rep, other_rep):
        service = NotificationService(session)
        read = await _notify(service, rep.id, title="Read one")
        await _notify(service, rep.id, title="Unread one", type=NotificationType.TASK)
        await _notify(service, other_rep.id, title="Not mine")
        await service.mark_as_read(read.id, rep.id)

        everything, total = await service.list_notifications(rep.id)
        assert total == 2
        assert {n.title for n in everything} == {"Read one", "Unread one"}

        unread, _ = await service.list_notifications(rep.id, is_read=False)
        assert [n.title for n in unread] == ["Unread one"]

        tasks, _ = await service.list_notifications(rep.id, type=NotificationType.TASK)
        assert [n.title for n in tasks] == ["Unread one"]

        found, _ = await service.list_notifications(rep.id, search="read one")
        assert {n.title for n in found} == {"Read one", "Unread one"}

    async def test_delete_notification(self, session, rep):
        service = NotificationService(session)
        notification = await _notify(service, rep.id)

        await service.delete_notification(notification.id)

        with pytest.raises(NotFoundError, match="Notification not found"):
            await service.get_notification(notification.id)


# =============================================================================
# TEST: SAFE HELPERS
# =============================================================================


class TestNotifySafely:
    async def test_failure_is_swallowed(self, session, outbox, rep):
        service = NotificationService(session, outbox)

        # Title is required; the savepoint rolls back and nothing is queued
        result = await notify_safely(
            service,
            type=NotificationType.SYSTEM,
            title=None,
            message="Broken",
            recipients=[rep.id],
        )

        assert result is None
        assert outbox.events == []
        assert await service.get_unread_count(rep.id) == 0

    async def test_success_returns_notification(self, session, rep):
        result = await notify_safely(
            NotificationService(session),
            type=NotificationType.SYSTEM,
            title="Fine",
            message="Works",
            recipients=[rep.id],
        )

        assert result is not None
        assert result.recipient_ids == [rep.id]
