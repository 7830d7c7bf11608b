"""Notification queue enums and the allowed status graph."""

from enum import Enum


class NotificationType(str, Enum):
    EMAIL_DRAFT = "EMAIL_DRAFT"
    TASK_REMINDER = "TASK_REMINDER"


class NotificationStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SENT = "SENT"
    FAILED = "FAILED"


# Re-setting the current status is always allowed (idempotent retries).
# FAILED -> APPROVED is a manual re-approval after the address is fixed.
NOTIFICATION_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING_APPROVAL: frozenset(
        {NotificationStatus.APPROVED, NotificationStatus.REJECTED}
    ),
    NotificationStatus.APPROVED: frozenset(
        {NotificationStatus.SENT, NotificationStatus.FAILED}
    ),
    NotificationStatus.FAILED: frozenset({NotificationStatus.APPROVED}),
    NotificationStatus.REJECTED: frozenset(),
    NotificationStatus.SENT: frozenset(),
}

TERMINAL_NOTIFICATION_STATUSES = frozenset(
    {NotificationStatus.SENT, NotificationStatus.REJECTED, NotificationStatus.FAILED}
)


def can_transition(current: NotificationStatus, requested: NotificationStatus) -> bool:
    if current == requested:
        return True
    return requested in NOTIFICATION_TRANSITIONS[current]


class LifecycleOutcome(str, Enum):
    """How one run of the follow-up flow ended."""

    WATCHING = "watching"  # wait scheduled
    REMINDER_CREATED = "reminder_created"
    EMAIL_DRAFTED = "email_drafted"  # status expired unchanged
    STATUS_RESOLVED = "status_resolved"
    SKIPPED = "skipped"
