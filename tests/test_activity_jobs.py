"""
Tests for the activity jobs.

These tests verify:
1. REMINDERS: activities due tomorrow notify the assignee once
2. OVERDUE: past activities notify owner and admins once, with history
3. BADGES: owners of today's activities get a refresh event
4. RUNNER: own transaction, publication, failure alerts
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from dealflow.core import get_settings
from dealflow.jobs import (
    check_activity_reminders,
    check_overdue_activities,
    refresh_activity_badges,
    run_job,
)
from dealflow.jobs import activity_jobs
from dealflow.jobs.activity_jobs import seconds_until, send_alert
from dealflow.models import (
    ActivityType,
    Lead,
    LeadActivity,
    LeadHistory,
    LeadHistoryAction,
    Notification,
)
from dealflow.realtime import user_room
from dealflow.schemas import LeadCreate
from dealflow.services import LeadService

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def _activity(lead: Lead, when: datetime, kind=ActivityType.CALL, **kwargs) -> LeadActivity:
    return LeadActivity(lead_id=lead.id, type=kind, date=when, added_by_id=lead.created_by_id, **kwargs)


@pytest.fixture
async def leads(session, admin, rep, stages) -> dict[str, Lead]:
    service = LeadService(session)
    created = {
        "assigned": await service.create_lead(
            LeadCreate(title="Website", name="Karim", assigned_to_id=rep.id), admin
        ),
        "unassigned": await service.create_lead(LeadCreate(title="ERP", name="Meghna"), admin),
    }
    await session.commit()
    return created


async def _notifications(session, prefix: str) -> list[Notification]:
    result = await session.execute(
        select(Notification).where(Notification.title.startswith(prefix)).order_by(Notification.created_at)
    )
    return list(result.scalars())


# =============================================================================
# TEST: REMINDERS
# =============================================================================


class TestActivityReminders:
    async def test_tomorrow_activity_reminds_assignee(self, session, outbox, rep, leads):
        activity = _activity(leads["assigned"], NOW + timedelta(days=1, hours=2))
        session.add(activity)
        await session.flush()

        sent = await check_activity_reminders(session, outbox, NOW)

        assert sent == 1
        assert activity.reminder_sent is True
        [notification] = await _notifications(session, "Activity Reminder")
        assert notification.title == "Activity Reminder: call - Website"
        assert notification.recipient_ids == [rep.id]
        assert notification.meta["isReminder"] is True
        assert "(Mar 11, 2026)" in notification.message
        assert outbox.events[-1].rooms == [user_room(rep.id)]

    async def test_second_run_sends_nothing(self, session, outbox, leads):
        session.add(_activity(leads["assigned"], NOW + timedelta(days=1)))
        await session.flush()

        assert await check_activity_reminders(session, outbox, NOW) == 1
        assert await check_activity_reminders(session, outbox, NOW) == 0

    async def test_skips_other_days_completed_and_unassigned(self, session, outbox, leads):
        session.add_all(
            [
                _activity(leads["assigned"], NOW + timedelta(hours=3)),
                _activity(leads["assigned"], NOW + timedelta(days=2)),
                _activity(leads["assigned"], NOW + timedelta(days=1), completed=True),
                _activity(leads["unassigned"], NOW + timedelta(days=1)),
            ]
        )
        await session.flush()

        assert await check_activity_reminders(session, outbox, NOW) == 0
        assert await _notifications(session, "Activity Reminder") == []


# =============================================================================
# TEST: OVERDUE
# =============================================================================


class TestOverdueActivities:
    async def test_overdue_notifies_owner_and_admins(self, session, outbox, super_admin, admin, rep, leads):
        activity = _activity(leads["assigned"], NOW - timedelta(days=2), kind=ActivityType.MEETING)
        session.add(activity)
        await session.flush()

        notified = await check_overdue_activities(session, outbox, NOW)

        assert notified == 1
        assert activity.marked_as_overdue is True
        [notification] = await _notifications(session, "Overdue Activity")
        assert notification.title == "Overdue Activity: meeting - Website"
        assert set(notification.recipient_ids) == {rep.id, admin.id, super_admin.id}
        assert notification.meta["isOverdue"] is True

        history = (
            await session.execute(
                select(LeadHistory).where(LeadHistory.action == LeadHistoryAction.ACTIVITY_OVERDUE.value)
            )
        ).scalar_one()
        assert history.overdue_notification_sent is True
        assert history.changed_by_id == rep.id

    async def test_unassigned_lead_goes_to_creator(self, session, outbox, admin, leads):
        session.add(_activity(leads["unassigned"], NOW - timedelta(days=1)))
        await session.flush()

        assert await check_overdue_activities(session, outbox, NOW) == 1
        [notification] = await _notifications(session, "Overdue Activity")
        assert notification.recipient_ids == [admin.id]

    async def test_earlier_today_is_not_overdue(self, session, outbox, leads):
        session.add(_activity(leads["assigned"], NOW - timedelta(hours=2)))
        await session.flush()

        assert await check_overdue_activities(session, outbox, NOW) == 0

    async def test_each_activity_flagged_once(self, session, outbox, leads):
        session.add(_activity(leads["assigned"], NOW - timedelta(days=3)))
        session.add(_activity(leads["assigned"], NOW - timedelta(days=3), completed=True))
        await session.flush()

        assert await check_overdue_activities(session, outbox, NOW) == 1
        assert await check_overdue_activities(session, outbox, NOW) == 0


# =============================================================================
# TEST: BADGES
# =============================================================================


class TestActivityBadges:
    async def test_owners_with_activities_today(self, session, outbox, admin, rep, leads):
        session.add_all(
            [
                _activity(leads["assigned"], NOW + timedelta(hours=1)),
                _activity(leads["assigned"], NOW + timedelta(hours=4)),
                _activity(leads["unassigned"], NOW + timedelta(days=1)),
            ]
        )
        await session.flush()

        count = await refresh_activity_badges(session, outbox, NOW)

        assert count == 1
        [event] = outbox.events
        assert event.event == "activityBadgeRefresh"
        assert event.rooms == [user_room(rep.id)]
        assert event.payload["date"] == "2026-03-10"
        assert event.payload["userId"] == str(rep.id)


# =============================================================================
# TEST: RUNNER
# =============================================================================


class TestRunJob:
    async def test_run_commits_and_publishes(self, session, session_factory, gateway, rep, leads):
        session.add(_activity(leads["assigned"], NOW + timedelta(days=1)))
        await session.commit()

        results = await run_job("reminders", session_factory, gateway, now=NOW)

        assert results["success"] is True
        assert results["count"] == 1
        assert [event for event, _ in gateway.pending_events(rep.id)] == ["notification:new"]

        async with session_factory() as fresh:
            flags = (await fresh.execute(select(LeadActivity.reminder_sent))).scalars().all()
        assert flags == [True]

    async def test_unknown_job(self):
        with pytest.raises(ValueError, match="Unknown job"):
            await run_job("payroll")

    async def test_failure_is_reported_not_raised(self, monkeypatch, session_factory):
        alerts = []

        async def broken(session, outbox, now):
            raise RuntimeError("scan exploded")

        async def record_alert(**kwargs):
            alerts.append(kwargs)

        monkeypatch.setitem(activity_jobs.JOBS, "overdue", broken)
        monkeypatch.setattr(activity_jobs, "send_alert", record_alert)

        results = await run_job("overdue", session_factory, now=NOW)

        assert results["success"] is False
        assert results["error"] == "scan exploded"
        [alert] = alerts
        assert alert["severity"] == "critical"
        assert alert["title"] == "Job overdue failed"


class TestAlerting:
    async def test_alert_posts_to_webhook(self, monkeypatch):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            activity_jobs.httpx,
            "AsyncClient",
            lambda: real_client(transport=httpx.MockTransport(handler)),
        )
        monkeypatch.setattr(get_settings(), "alert_webhook_url", "https://alerts.example/hook")

        await send_alert("Job failed", "boom", severity="critical", details={"job": "overdue"})

        [request] = received
        assert request.url == "https://alerts.example/hook"
        body = request.read()
        assert b'"severity":"critical"' in body.replace(b" ", b"")

    async def test_webhook_errors_are_logged(self, monkeypatch, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            activity_jobs.httpx,
            "AsyncClient",
            lambda: real_client(transport=httpx.MockTransport(handler)),
        )
        monkeypatch.setattr(get_settings(), "alert_webhook_url", "https://alerts.example/hook")

        await send_alert("Job failed", "boom")

        assert "Failed to send webhook alert" in caplog.text


class TestSecondsUntil:
    @pytest.mark.parametrize(
        "at,expected",
        [
            ("09:30", 30 * 60),
            ("09:00", 24 * 3600),
            ("00:05", 15 * 3600 + 5 * 60),
        ],
    )
    def test_next_occurrence(self, at, expected):
        assert seconds_until(at, NOW) == expected
