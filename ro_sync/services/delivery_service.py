"""Delivery of approved notifications.

Re-invoking delivery for the same id is safe: anything already SENT,
REJECTED or FAILED is skipped without touching the mailbox. Side effects
(contact cache update, push of the re-armed dates) are scheduled as their
own jobs only after the SENT transition has committed.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.enums import (
    JobType,
    NotificationStatus,
    NotificationType,
    TERMINAL_NOTIFICATION_STATUSES,
)
from ro_sync.db.models import Job, NotificationQueueItem, RepairOrder
from ro_sync.jobs.utils import mask_email
from ro_sync.services import (
    mail_service,
    notification_queue_service,
    productivity_service,
    shop_service,
)
from ro_sync.services.graph_service import GraphClient
from ro_sync.services.scheduler import Scheduler
from ro_sync.utils.date_parsing import parse_date

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], Awaitable[GraphClient]]

OUTCOME_SENT = "sent"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass
class DeliveryResult:
    outcome: str
    notification_id: int
    reason: str | None = None
    message_id: str | None = None
    conversation_id: str | None = None
    repair_order_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _load_siblings(
    db: Session, primary: NotificationQueueItem, batched_ids: list[int] | None
) -> list[NotificationQueueItem]:
    siblings = []
    for sibling_id in batched_ids or []:
        if sibling_id == primary.id:
            continue
        item = notification_queue_service.get_notification(db, sibling_id)
        if item is None:
            logger.warning("Batched notification %s not found", sibling_id)
            continue
        if NotificationStatus(item.status) in TERMINAL_NOTIFICATION_STATUSES:
            continue
        siblings.append(item)
    return siblings


def _mark_sent(items: list[NotificationQueueItem]) -> None:
    for item in items:
        if item.status == NotificationStatus.PENDING_APPROVAL.value:
            # Siblings ride along with the approved primary.
            notification_queue_service.apply_transition(item, NotificationStatus.APPROVED)
        notification_queue_service.apply_transition(item, NotificationStatus.SENT)
        item.last_error = None


def rearm_follow_up_dates(db: Session, repair_order_ids: list[int], today: date) -> None:
    next_date = today + timedelta(days=settings.FOLLOW_UP_INTERVAL_DAYS)
    for repair_order_id in repair_order_ids:
        record = db.get(RepairOrder, repair_order_id)
        if record is None:
            continue
        record.last_date_updated = today.isoformat()
        record.next_date_to_update = next_date.isoformat()


def _fail(db: Session, item: NotificationQueueItem, reason: str) -> DeliveryResult:
    notification_queue_service.apply_transition(item, NotificationStatus.FAILED, error=reason)
    db.commit()
    logger.warning(
        "Notification failed: %s",
        reason,
        extra=build_log_context(notification_id=item.id, repair_order_id=item.repair_order_id),
    )
    return DeliveryResult(outcome=OUTCOME_FAILED, notification_id=item.id, reason=reason)


def _schedule_post_send(
    db: Session,
    scheduler: Scheduler,
    *,
    notification: NotificationQueueItem,
    to: str,
    repair_order_ids: list[int],
) -> None:
    """Best-effort follow-on jobs. A failure here never undoes the send."""
    record = db.get(RepairOrder, notification.repair_order_id)
    shop_name = record.shop_name if record else None
    try:
        if shop_name and (shop_service.get_shop_email(db, shop_name) or "").lower() != to.lower():
            scheduler.trigger(
                JobType.UPDATE_SHOP_CONTACT,
                {"shop_name": shop_name, "email": to},
                idempotency_key=f"notification-sent:{notification.id}:contact",
            )
    except Exception as e:
        db.rollback()
        logger.error(
            "Could not schedule contact update: %s",
            type(e).__name__,
            extra=build_log_context(notification_id=notification.id),
        )

    try:
        scheduler.trigger(
            JobType.PUSH_REPAIR_ORDERS,
            {"user_id": notification.user_id, "repair_order_ids": repair_order_ids},
            idempotency_key=f"notification-sent:{notification.id}:push",
        )
    except Exception as e:
        db.rollback()
        logger.error(
            "Could not schedule push after send: %s",
            type(e).__name__,
            extra=build_log_context(notification_id=notification.id),
        )


async def _deliver_email(
    db: Session,
    scheduler: Scheduler,
    client_factory: ClientFactory,
    item: NotificationQueueItem,
    siblings: list[NotificationQueueItem],
    today: date,
) -> DeliveryResult:
    payload = item.payload or {}
    to = (payload.get("to") or "").strip()
    if not to:
        return _fail(db, item, "Missing recipient email address")

    reply_to = payload.get("thread_id") or notification_queue_service.get_thread_continuation_id(
        db, item.repair_order_id
    )

    async with await client_factory(item.user_id) as client:
        sent = await mail_service.send_email(
            client,
            to=to,
            subject=payload.get("subject") or "",
            body=payload.get("body") or "",
            cc=payload.get("cc"),
            reply_to_message_id=reply_to,
        )

    items = [item, *siblings]
    repair_order_ids = list(dict.fromkeys(entry.repair_order_id for entry in items))
    notification_queue_service.set_outlook_ids(
        items, sent.internet_message_id, sent.conversation_id
    )
    _mark_sent(items)
    rearm_follow_up_dates(db, repair_order_ids, today)
    db.commit()

    logger.info(
        "Delivered notification to=%s siblings=%s replied=%s",
        mask_email(to),
        len(siblings),
        sent.replied,
        extra=build_log_context(notification_id=item.id, repair_order_id=item.repair_order_id),
    )

    _schedule_post_send(
        db, scheduler, notification=item, to=to, repair_order_ids=repair_order_ids
    )
    return DeliveryResult(
        outcome=OUTCOME_SENT,
        notification_id=item.id,
        message_id=sent.internet_message_id,
        conversation_id=sent.conversation_id,
        repair_order_ids=repair_order_ids,
    )


async def _deliver_task(
    db: Session,
    client_factory: ClientFactory,
    item: NotificationQueueItem,
    today: date,
) -> DeliveryResult:
    payload = item.payload or {}
    title = (payload.get("title") or "").strip()
    if not title:
        return _fail(db, item, "Missing reminder title")
    due = parse_date(payload.get("due_date")) or today
    notes = payload.get("notes") or ""

    async with await client_factory(item.user_id) as client:
        task_id = await productivity_service.create_todo_task(
            client, title=title, due_date=due, content=notes
        )
        # Once the task exists the reminder counts as delivered.
        try:
            await productivity_service.create_calendar_event(
                client, subject=title, day=due, description=notes
            )
        except (GraphAPIError, RateLimitedError, httpx.HTTPError) as e:
            logger.warning(
                "Calendar event not created for reminder: %s",
                type(e).__name__,
                extra=build_log_context(notification_id=item.id),
            )

    notification_queue_service.set_outlook_ids([item], task_id or None, None)
    _mark_sent([item])
    db.commit()
    return DeliveryResult(
        outcome=OUTCOME_SENT,
        notification_id=item.id,
        message_id=task_id or None,
        repair_order_ids=[item.repair_order_id],
    )


async def deliver_notification(
    db: Session,
    scheduler: Scheduler,
    client_factory: ClientFactory,
    notification_id: int,
    batched_ids: list[int] | None = None,
    *,
    today: date | None = None,
) -> DeliveryResult:
    """
    Send one approved notification, marking batched siblings SENT with it.

    Returns a skip for missing, unapproved and already-terminal items. A
    missing recipient fails the item immediately. Send errors propagate so
    the job is retried.
    """
    today = today or date.today()
    item = notification_queue_service.get_notification(db, notification_id)
    if item is None:
        return DeliveryResult(
            outcome=OUTCOME_SKIPPED, notification_id=notification_id, reason="not found"
        )

    status = NotificationStatus(item.status)
    if status in TERMINAL_NOTIFICATION_STATUSES:
        logger.info(
            "Notification already %s, nothing to deliver",
            status.value,
            extra=build_log_context(notification_id=notification_id),
        )
        return DeliveryResult(
            outcome=OUTCOME_SKIPPED, notification_id=notification_id, reason=f"already {status.value}"
        )
    if status != NotificationStatus.APPROVED:
        return DeliveryResult(
            outcome=OUTCOME_SKIPPED, notification_id=notification_id, reason="not approved"
        )

    if item.type == NotificationType.EMAIL_DRAFT.value:
        siblings = _load_siblings(db, item, batched_ids)
        return await _deliver_email(db, scheduler, client_factory, item, siblings, today)
    if item.type == NotificationType.TASK_REMINDER.value:
        return await _deliver_task(db, client_factory, item, today)
    return _fail(db, item, f"Unknown notification type {item.type}")


def mark_delivery_exhausted(db: Session, job: Job, exception: Exception | None) -> None:
    """Failure hook: never leave a notification stuck in APPROVED."""
    payload = job.payload or {}
    ids = [payload.get("notification_id"), *(payload.get("batched_ids") or [])]
    reason = f"Delivery failed after {job.attempts} attempts: {job.last_error or exception}"
    changed = False
    for notification_id in ids:
        if notification_id is None:
            continue
        item = notification_queue_service.get_notification(db, int(notification_id))
        if item is None or item.status != NotificationStatus.APPROVED.value:
            continue
        notification_queue_service.apply_transition(item, NotificationStatus.FAILED, error=reason)
        changed = True
        logger.warning(
            "Notification marked FAILED after retries",
            extra=build_log_context(notification_id=item.id, job_id=str(job.id)),
        )
    if changed:
        db.commit()
