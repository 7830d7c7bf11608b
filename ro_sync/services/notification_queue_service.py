"""Notification queue - approval-gated outbound communications.

Status moves are checked against ``NOTIFICATION_TRANSITIONS``; an illegal
move raises ``InvalidTransitionError`` instead of silently rewriting history
(for example SENT back to PENDING_APPROVAL).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ro_sync.core.errors import InvalidTransitionError
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.enums import NotificationStatus, NotificationType, can_transition
from ro_sync.db.models import NotificationQueueItem

logger = logging.getLogger(__name__)


def get_notification(db: Session, notification_id: int) -> NotificationQueueItem | None:
    return db.get(NotificationQueueItem, notification_id)


def get_pending_for_repair_order(
    db: Session, repair_order_id: int
) -> NotificationQueueItem | None:
    return (
        db.query(NotificationQueueItem)
        .filter(
            NotificationQueueItem.repair_order_id == repair_order_id,
            NotificationQueueItem.status == NotificationStatus.PENDING_APPROVAL.value,
        )
        .first()
    )


def list_notifications(
    db: Session,
    status: NotificationStatus | None = None,
    repair_order_id: int | None = None,
    limit: int = 50,
) -> list[NotificationQueueItem]:
    query = db.query(NotificationQueueItem)
    if status:
        query = query.filter(NotificationQueueItem.status == status.value)
    if repair_order_id is not None:
        query = query.filter(NotificationQueueItem.repair_order_id == repair_order_id)
    return (
        query.order_by(NotificationQueueItem.created_at.desc(), NotificationQueueItem.id.desc())
        .limit(limit)
        .all()
    )


def enqueue(
    db: Session,
    *,
    repair_order_id: int,
    user_id: str,
    type: NotificationType,
    payload: dict,
    status: NotificationStatus = NotificationStatus.PENDING_APPROVAL,
    scheduled_for: datetime | None = None,
) -> int:
    """
    Add a notification and return its id.

    A repair order has at most one PENDING_APPROVAL item: asking for another
    returns the existing id unchanged.
    """
    if status == NotificationStatus.PENDING_APPROVAL:
        existing = get_pending_for_repair_order(db, repair_order_id)
        if existing:
            logger.info(
                "Notification already pending for repair order %s",
                repair_order_id,
                extra=build_log_context(
                    repair_order_id=repair_order_id, notification_id=existing.id
                ),
            )
            return existing.id

    item = NotificationQueueItem(
        repair_order_id=repair_order_id,
        user_id=user_id,
        type=type.value,
        status=status.value,
        payload=payload,
        scheduled_for=scheduled_for or datetime.now(timezone.utc),
    )
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent enqueue for the same repair order won the unique index.
        db.rollback()
        existing = get_pending_for_repair_order(db, repair_order_id)
        if existing is None:
            raise
        return existing.id

    db.refresh(item)
    logger.info(
        "Queued %s notification %s",
        type.value,
        item.id,
        extra=build_log_context(repair_order_id=repair_order_id, notification_id=item.id),
    )
    return item.id


def apply_transition(
    item: NotificationQueueItem,
    new_status: NotificationStatus,
    *,
    error: str | None = None,
) -> bool:
    """Set the status in memory. Returns False when it was already set."""
    current = NotificationStatus(item.status)
    if not can_transition(current, new_status):
        raise InvalidTransitionError(current.value, new_status.value)
    if error is not None:
        item.last_error = error
    if current == new_status:
        return False
    item.status = new_status.value
    return True


def transition(
    db: Session,
    notification_id: int,
    new_status: NotificationStatus,
    *,
    error: str | None = None,
) -> NotificationQueueItem:
    item = get_notification(db, notification_id)
    if item is None:
        raise LookupError(f"Notification {notification_id} not found")
    changed = apply_transition(item, new_status, error=error)
    db.commit()
    if changed:
        logger.info(
            "Notification %s -> %s",
            notification_id,
            new_status.value,
            extra=build_log_context(notification_id=notification_id),
        )
    return item


def approve(db: Session, notification_id: int) -> NotificationQueueItem:
    return transition(db, notification_id, NotificationStatus.APPROVED)


def reject(db: Session, notification_id: int) -> NotificationQueueItem:
    return transition(db, notification_id, NotificationStatus.REJECTED)


def set_outlook_ids(
    items: Iterable[NotificationQueueItem],
    message_id: str | None,
    conversation_id: str | None,
) -> None:
    for item in items:
        if message_id:
            item.outlook_message_id = message_id
        if conversation_id:
            item.outlook_conversation_id = conversation_id


def get_thread_continuation_id(db: Session, repair_order_id: int) -> str | None:
    """Message id of the latest sent email for the repair order, to reply on."""
    latest = (
        db.query(NotificationQueueItem)
        .filter(
            NotificationQueueItem.repair_order_id == repair_order_id,
            NotificationQueueItem.type == NotificationType.EMAIL_DRAFT.value,
            NotificationQueueItem.status == NotificationStatus.SENT.value,
            NotificationQueueItem.outlook_message_id.is_not(None),
        )
        .order_by(NotificationQueueItem.created_at.desc(), NotificationQueueItem.id.desc())
        .first()
    )
    return latest.outlook_message_id if latest else None
