"""
Background jobs for Dealflow.

- activity_jobs: daily activity reminders, overdue scans and badge refresh
"""

from .activity_jobs import (
    JOBS,
    JobScheduler,
    check_activity_reminders,
    check_overdue_activities,
    refresh_activity_badges,
    run_job,
)

__all__ = [
    "JOBS",
    "JobScheduler",
    "check_activity_reminders",
    "check_overdue_activities",
    "refresh_activity_badges",
    "run_job",
]
