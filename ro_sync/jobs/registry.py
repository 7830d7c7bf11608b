"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from ro_sync.db.enums import JobType
from ro_sync.jobs.handlers import lifecycle, notifications, sync

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.PUSH_REPAIR_ORDERS.value: sync.process_push_repair_orders,
    JobType.PULL_REPAIR_ORDERS.value: sync.process_pull_repair_orders,
    JobType.MOVE_RO_SHEET.value: sync.process_move_ro_sheet,
    JobType.ARCHIVE_REPAIR_ORDER.value: sync.process_archive_repair_order,
    JobType.RO_LIFECYCLE_START.value: lifecycle.process_ro_lifecycle_start,
    JobType.RO_LIFECYCLE_RECHECK.value: lifecycle.process_ro_lifecycle_recheck,
    JobType.CREATE_FOLLOW_UP_REMINDERS.value: lifecycle.process_create_follow_up_reminders,
    JobType.SEND_APPROVED_NOTIFICATION.value: notifications.process_send_approved_notification,
    JobType.UPDATE_SHOP_CONTACT.value: notifications.process_update_shop_contact,
    JobType.OVERDUE_SWEEP.value: notifications.process_overdue_sweep,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
