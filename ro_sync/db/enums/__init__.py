"""Enum definitions for application constants."""

from ro_sync.db.enums.jobs import JobStatus, JobType
from ro_sync.db.enums.notifications import (
    LifecycleOutcome,
    NOTIFICATION_TRANSITIONS,
    NotificationStatus,
    NotificationType,
    TERMINAL_NOTIFICATION_STATUSES,
    can_transition,
)

DEFAULT_JOB_STATUS: JobStatus = JobStatus.PENDING
DEFAULT_NOTIFICATION_STATUS: NotificationStatus = NotificationStatus.PENDING_APPROVAL

__all__ = [
    "DEFAULT_JOB_STATUS",
    "DEFAULT_NOTIFICATION_STATUS",
    "JobStatus",
    "JobType",
    "LifecycleOutcome",
    "NOTIFICATION_TRANSITIONS",
    "NotificationStatus",
    "NotificationType",
    "TERMINAL_NOTIFICATION_STATUSES",
    "can_transition",
]
