"""
Activity Jobs: daily reminder, overdue and badge-refresh scans.

Each job takes a session and an outbox, flags what it processed so a
second run on the same day does nothing, and returns a count. ``run_job``
wraps a job in its own transaction and alerts on failure; ``JobScheduler``
runs the jobs daily inside the API process, and ``main`` runs one from
cron.

Typical cron schedule: 0 9 * * * (reminders), 5 0 * * * (overdue)
"""

import argparse
import asyncio
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Awaitable, Callable
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.logging import configure_logging
from ..models import (
    Lead,
    LeadActivity,
    LeadHistoryAction,
    NotificationEntityType,
    NotificationType,
    as_utc,
    utcnow,
)
from ..realtime import EventOutbox, RealtimeGateway
from ..services.lead_records import record_history
from ..services.notification_helpers import admin_user_ids, notify_safely
from ..services.notifications import NotificationService

logger = logging.getLogger(__name__)

JobFunc = Callable[[AsyncSession, EventOutbox, datetime], Awaitable[int]]


def _day_bounds(now: datetime, offset_days: int = 0) -> tuple[datetime, datetime]:
    start = datetime.combine(as_utc(now).date(), time.min, tzinfo=as_utc(now).tzinfo)
    start += timedelta(days=offset_days)
    return start, start + timedelta(days=1)


def _format_date(value: datetime) -> str:
    return f"{as_utc(value):%b} {as_utc(value).day}, {as_utc(value).year}"


# =============================================================================
# JOBS
# =============================================================================


async def check_activity_reminders(
    session: AsyncSession,
    outbox: EventOutbox,
    now: datetime | None = None,
) -> int:
    """Remind assignees of uncompleted activities due tomorrow."""
    start, end = _day_bounds(now or utcnow(), offset_days=1)
    result = await session.execute(
        select(LeadActivity, Lead)
        .join(Lead, LeadActivity.lead_id == Lead.id)
        .where(
            LeadActivity.completed.is_(False),
            LeadActivity.reminder_sent.is_(False),
            LeadActivity.date >= start,
            LeadActivity.date < end,
        )
        .order_by(LeadActivity.date)
    )

    notifications = NotificationService(session, outbox)
    sent = 0
    for activity, lead in result.all():
        if lead.assigned_to_id is None:
            continue
        kind = activity.type.value
        created = await notify_safely(
            notifications,
            type=NotificationType.LEAD,
            title=f"Activity Reminder: {kind} - {lead.title}",
            message=(
                f"You have a {kind} activity scheduled for tomorrow "
                f'({_format_date(activity.date)}) for lead "{lead.title}".'
            ),
            recipients=[lead.assigned_to_id],
            entity_type=NotificationEntityType.LEAD,
            entity_id=lead.id,
            triggered_by=lead.assigned_to_id,
            metadata={
                "activityId": str(activity.id),
                "activityType": kind,
                "activityDate": as_utc(activity.date).isoformat(),
                "leadTitle": lead.title,
                "isReminder": True,
            },
        )
        if created is not None:
            activity.reminder_sent = True
            sent += 1

    await session.flush()
    logger.info(f"Activity reminder check sent {sent} reminder(s)")
    return sent


async def check_overdue_activities(
    session: AsyncSession,
    outbox: EventOutbox,
    now: datetime | None = None,
) -> int:
    """Notify owners and admins of uncompleted activities dated before today."""
    today, _ = _day_bounds(now or utcnow())
    result = await session.execute(
        select(LeadActivity, Lead)
        .join(Lead, LeadActivity.lead_id == Lead.id)
        .where(
            LeadActivity.completed.is_(False),
            LeadActivity.marked_as_overdue.is_(False),
            LeadActivity.date < today,
        )
        .order_by(LeadActivity.date)
    )
    rows = result.all()
    if not rows:
        return 0

    admins = await admin_user_ids(session)
    notifications = NotificationService(session, outbox)
    notified = 0
    for activity, lead in rows:
        owner_id = lead.owner_id
        if owner_id is None and not admins:
            logger.info(f"Skipping overdue activity {activity.id}: no recipients")
            continue

        kind = activity.type.value
        created = await notify_safely(
            notifications,
            type=NotificationType.LEAD,
            title=f"Overdue Activity: {kind} - {lead.title}",
            message=(
                f"{kind.capitalize()} scheduled for {_format_date(activity.date)} "
                f'is overdue for lead "{lead.title}".'
            ),
            recipients=[owner_id, *admins],
            entity_type=NotificationEntityType.LEAD,
            entity_id=lead.id,
            triggered_by=owner_id or admins[0],
            metadata={
                "activityId": str(activity.id),
                "activityType": kind,
                "activityDate": as_utc(activity.date).isoformat(),
                "leadTitle": lead.title,
                "isOverdue": True,
            },
        )
        if created is None:
            continue

        activity.marked_as_overdue = True
        record_history(
            session,
            lead.id,
            LeadHistoryAction.ACTIVITY_OVERDUE,
            owner_id,
            description=f"{kind.capitalize()} scheduled for {_format_date(activity.date)} is overdue",
            overdue_notification_sent=True,
        )
        notified += 1

    await session.flush()
    logger.info(f"Overdue activity check notified {notified} activit(ies)")
    return notified


async def refresh_activity_badges(
    session: AsyncSession,
    outbox: EventOutbox,
    now: datetime | None = None,
) -> int:
    """Tell every user with an activity today to refresh their badge."""
    start, end = _day_bounds(now or utcnow())
    result = await session.execute(
        select(Lead.assigned_to_id, Lead.created_by_id)
        .join(LeadActivity, LeadActivity.lead_id == Lead.id)
        .where(LeadActivity.date >= start, LeadActivity.date < end)
        .distinct()
    )

    user_ids: dict[UUID, None] = {}
    for assigned_to_id, created_by_id in result.all():
        owner = assigned_to_id or created_by_id
        if owner is not None:
            user_ids[owner] = None

    date = start.date().isoformat()
    for user_id in user_ids:
        outbox.to_user(user_id, "activityBadgeRefresh", {"userId": str(user_id), "date": date})

    logger.info(f"Queued activityBadgeRefresh for {len(user_ids)} user(s)")
    return len(user_ids)


JOBS: dict[str, JobFunc] = {
    "reminders": check_activity_reminders,
    "overdue": check_overdue_activities,
    "badges": refresh_activity_badges,
}


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """Log a job failure and forward it to the alert webhook when configured."""
    log_message = f"[JOB ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = get_settings().alert_webhook_url
    if not webhook_url:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": utcnow().isoformat(),
        "source": "dealflow-jobs",
        "details": details or {},
    }
    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=10)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


# =============================================================================
# RUNNER
# =============================================================================


async def run_job(
    name: str,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    gateway: RealtimeGateway | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run one job in its own transaction. Failures are alerted, never raised.

    Without a gateway the job's events are discarded after commit; the
    notifications themselves are persisted either way.
    """
    if name not in JOBS:
        raise ValueError(f"Unknown job {name!r}; expected one of {sorted(JOBS)}")

    if session_factory is None:
        from ..core.database import async_session_factory

        session_factory = async_session_factory

    started_at = utcnow()
    results: dict[str, Any] = {"job": name, "started_at": started_at.isoformat(), "success": False}
    logger.info(f"Starting job {name}")

    outbox = EventOutbox()
    try:
        async with session_factory() as session:
            count = await JOBS[name](session, outbox, now or started_at)
            await session.commit()
    except Exception as e:
        logger.exception(f"Job {name} failed")
        results["error"] = str(e)
        await send_alert(
            title=f"Job {name} failed",
            message=f"The {name} job crashed unexpectedly.",
            severity="critical",
            details={"error": str(e), "traceback": traceback.format_exc()[-500:]},
        )
        return results

    if gateway is not None:
        await outbox.publish(gateway)

    results.update(
        success=True,
        count=count,
        duration_seconds=(utcnow() - started_at).total_seconds(),
    )
    logger.info(f"Job {name} completed in {results['duration_seconds']:.2f}s: {count} processed")
    return results


def seconds_until(at: str, now: datetime | None = None) -> float:
    """Seconds from ``now`` until the next ``HH:MM`` wall-clock time (UTC)."""
    hour, minute = (int(part) for part in at.split(":"))
    current = as_utc(now or utcnow())
    target = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= current:
        target += timedelta(days=1)
    return (target - current).total_seconds()


@dataclass
class ScheduledJob:
    name: str
    at: str


class JobScheduler:
    """Runs each job once a day at its configured time inside the event loop."""

    def __init__(
        self,
        jobs: list[ScheduledJob],
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: RealtimeGateway | None = None,
    ):
        self.jobs = jobs
        self.session_factory = session_factory
        self.gateway = gateway
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: RealtimeGateway | None = None,
    ) -> "JobScheduler":
        settings = get_settings()
        return cls(
            [
                ScheduledJob("reminders", settings.reminder_job_time),
                ScheduledJob("overdue", settings.overdue_job_time),
                ScheduledJob("badges", settings.badge_refresh_time),
            ],
            session_factory=session_factory,
            gateway=gateway,
        )

    def start(self) -> None:
        for job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job-{job.name}"))
            logger.info(f"Scheduled job {job.name} daily at {job.at} UTC")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _loop(self, job: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(seconds_until(job.at))
            await run_job(job.name, self.session_factory, self.gateway)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point: run one job and exit."""
    parser = argparse.ArgumentParser(description="Run a Dealflow activity job once")
    parser.add_argument("--job", choices=sorted(JOBS), required=True, help="Job to run")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    results = asyncio.run(run_job(args.job))
    print(f"Job finished: {results}")
    if not results["success"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
