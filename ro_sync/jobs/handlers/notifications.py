"""Notification delivery and follow-up sweep handlers."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone

from ro_sync.core.config import settings
from ro_sync.db.enums import JobType
from ro_sync.jobs.utils import mask_email, require_payload, store_result
from ro_sync.services import (
    delivery_service,
    graph_service,
    job_service,
    overdue_service,
    shop_service,
)
from ro_sync.services.scheduler import JobQueueScheduler, on_failure

logger = logging.getLogger(__name__)


async def process_send_approved_notification(db, job) -> None:
    """
    Deliver an approved notification.

    Payload:
        - notification_id: queue item to send
        - batched_ids: sibling items marked SENT with it (optional)
    """
    payload = require_payload(job, "notification_id")

    async def client_factory(user_id: str):
        return await graph_service.get_graph_client(db, user_id)

    result = await delivery_service.deliver_notification(
        db,
        JobQueueScheduler(db),
        client_factory,
        int(payload["notification_id"]),
        [int(value) for value in payload.get("batched_ids") or []],
    )
    store_result(job, result.as_dict())


on_failure(JobType.SEND_APPROVED_NOTIFICATION, delivery_service.mark_delivery_exhausted)


async def process_update_shop_contact(db, job) -> None:
    """Cache the address a follow-up was actually sent to."""
    payload = require_payload(job, "shop_name", "email")
    changed = shop_service.update_shop_email(db, payload["shop_name"], payload["email"])
    logger.info(
        "Shop contact update email=%s changed=%s", mask_email(payload["email"]), changed
    )
    store_result(job, {"changed": changed})


def next_sweep_at(now: datetime | None = None) -> datetime:
    """Next daily sweep time (OVERDUE_SWEEP_HOUR_UTC) strictly after ``now``."""
    now = now or datetime.now(timezone.utc)
    candidate = datetime.combine(
        now.date(), time(hour=settings.OVERDUE_SWEEP_HOUR_UTC), tzinfo=timezone.utc
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def schedule_overdue_sweep(db, user_id: str, now: datetime | None = None):
    run_at = next_sweep_at(now)
    return job_service.schedule_job(
        db,
        JobType.OVERDUE_SWEEP,
        {"user_id": user_id},
        run_at=run_at,
        idempotency_key=f"overdue-sweep:{run_at.date().isoformat()}",
    )


async def process_overdue_sweep(db, job) -> None:
    """Queue WAITING QUOTE follow-ups, then schedule tomorrow's sweep."""
    payload = require_payload(job, "user_id")
    counts = overdue_service.queue_overdue_follow_ups(db, user_id=payload["user_id"])
    store_result(job, counts)
    schedule_overdue_sweep(db, payload["user_id"])
