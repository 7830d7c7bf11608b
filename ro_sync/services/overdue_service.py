"""Daily sweep for repair orders stuck in WAITING QUOTE."""

from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.db.enums import NotificationType
from ro_sync.db.models import RepairOrder
from ro_sync.services import lifecycle_service, notification_queue_service
from ro_sync.utils.date_parsing import parse_date

logger = logging.getLogger(__name__)

WAITING_QUOTE = "WAITING QUOTE"


def find_overdue_waiting_quote(
    db: Session, *, today: date, threshold_days: int
) -> list[RepairOrder]:
    cutoff = today - timedelta(days=threshold_days)
    candidates = (
        db.query(RepairOrder)
        .filter(func.upper(func.trim(RepairOrder.current_status)) == WAITING_QUOTE)
        .order_by(RepairOrder.id)
        .all()
    )
    overdue = []
    for record in candidates:
        status_date = parse_date(record.current_status_date)
        if status_date is not None and status_date <= cutoff:
            overdue.append(record)
    return overdue


def queue_overdue_follow_ups(
    db: Session,
    *,
    user_id: str,
    today: date | None = None,
    threshold_days: int | None = None,
) -> dict[str, int]:
    """
    Queue a follow-up draft for each overdue WAITING QUOTE record.

    Records that already have a draft awaiting approval are left alone.
    """
    today = today or date.today()
    threshold_days = threshold_days or settings.OVERDUE_WAITING_QUOTE_DAYS
    counts = {"checked": 0, "queued": 0, "already_pending": 0, "skipped_no_email": 0}

    for record in find_overdue_waiting_quote(db, today=today, threshold_days=threshold_days):
        counts["checked"] += 1
        if notification_queue_service.get_pending_for_repair_order(db, record.id):
            counts["already_pending"] += 1
            continue
        payload = lifecycle_service.build_follow_up_payload(db, record, WAITING_QUOTE)
        if payload is None:
            counts["skipped_no_email"] += 1
            continue
        notification_queue_service.enqueue(
            db,
            repair_order_id=record.id,
            user_id=user_id,
            type=NotificationType.EMAIL_DRAFT,
            payload=payload,
        )
        counts["queued"] += 1

    logger.info(
        "Overdue sweep checked=%s queued=%s already_pending=%s skipped_no_email=%s",
        counts["checked"],
        counts["queued"],
        counts["already_pending"],
        counts["skipped_no_email"],
    )
    return counts
