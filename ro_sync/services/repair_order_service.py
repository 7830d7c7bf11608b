"""Repair order service - store writes and the jobs they fan out to.

Every write commits first, then schedules follow-on work (push, follow-up
flow, sheet move) as separate jobs. Scheduling failures are logged and
never roll back the write.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from ro_sync.core.constants import (
    ARCHIVE_DESTINATIONS,
    is_tracked_status,
    normalize_status_key,
)
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.enums import JobType
from ro_sync.db.models import RepairOrder
from ro_sync.services.excel_mapping import EXCEL_FIELDS
from ro_sync.services.scheduler import Scheduler

logger = logging.getLogger(__name__)

STATUS_FIELD = "current_status"
# Fields callers may set directly. Status goes through update_repair_order_status.
EDITABLE_FIELDS = frozenset(EXCEL_FIELDS) - {STATUS_FIELD, "current_status_date"}


def get_repair_order(db: Session, repair_order_id: int) -> RepairOrder | None:
    return db.get(RepairOrder, repair_order_id)


def _trigger_safely(
    db: Session,
    scheduler: Scheduler,
    job_type: JobType,
    payload: dict[str, Any],
    *,
    repair_order_id: int,
    idempotency_key: str | None = None,
) -> None:
    try:
        scheduler.trigger(job_type, payload, idempotency_key=idempotency_key)
    except Exception as e:
        db.rollback()
        logger.error(
            "Could not schedule %s: %s",
            job_type.value,
            type(e).__name__,
            extra=build_log_context(repair_order_id=repair_order_id, job_type=job_type.value),
        )


def request_push(
    db: Session, scheduler: Scheduler, repair_order_ids: list[int], *, user_id: str
) -> None:
    if not repair_order_ids:
        return
    _trigger_safely(
        db,
        scheduler,
        JobType.PUSH_REPAIR_ORDERS,
        {"user_id": user_id, "repair_order_ids": repair_order_ids},
        repair_order_id=repair_order_ids[0],
    )


def create_repair_order(
    db: Session,
    scheduler: Scheduler,
    *,
    user_id: str,
    values: dict[str, Any],
) -> RepairOrder:
    """Insert a record and push it. A status in ``values`` starts its follow-up flow."""
    unknown = set(values) - set(EXCEL_FIELDS)
    if unknown:
        raise ValueError(f"Unknown repair order fields: {', '.join(sorted(unknown))}")

    today = date.today().isoformat()
    record = RepairOrder(**values)
    if record.current_status:
        record.current_status_date = record.current_status_date or today
    record.date_made = record.date_made or today
    record.last_date_updated = today
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Created repair order", extra=build_log_context(repair_order_id=record.id))

    request_push(db, scheduler, [record.id], user_id=user_id)
    if record.current_status and is_tracked_status(record.current_status):
        _trigger_safely(
            db,
            scheduler,
            JobType.RO_LIFECYCLE_START,
            {
                "repair_order_id": record.id,
                "new_status": normalize_status_key(record.current_status),
                "user_id": user_id,
            },
            repair_order_id=record.id,
        )
    return record


def update_repair_order(
    db: Session,
    scheduler: Scheduler,
    repair_order_id: int,
    fields: dict[str, Any],
    *,
    user_id: str,
) -> RepairOrder:
    """Apply field edits. A ``current_status`` key is routed through the status path."""
    record = get_repair_order(db, repair_order_id)
    if record is None:
        raise LookupError(f"Repair order {repair_order_id} not found")

    fields = dict(fields)
    new_status = fields.pop(STATUS_FIELD, None)
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

    changed = False
    for name, value in fields.items():
        if getattr(record, name) != value:
            setattr(record, name, value)
            changed = True
    if changed:
        record.last_date_updated = date.today().isoformat()
        db.commit()
        db.refresh(record)

    if new_status is not None:
        # Pushes once for both the edits and the status.
        return update_repair_order_status(
            db, scheduler, repair_order_id, new_status, user_id=user_id, force_push=changed
        )
    if changed:
        request_push(db, scheduler, [record.id], user_id=user_id)
    return record


def apply_status_change(db: Session, record: RepairOrder, new_status: str) -> bool:
    """Write the status and stamp its date. Returns False when it is unchanged."""
    old_status = record.current_status
    if normalize_status_key(old_status) == normalize_status_key(new_status):
        return False

    today = date.today().isoformat()
    record.current_status = new_status.strip()
    record.current_status_date = today
    record.last_date_updated = today
    db.commit()
    db.refresh(record)
    logger.info(
        "Status changed %s -> %s",
        old_status,
        record.current_status,
        extra=build_log_context(repair_order_id=record.id),
    )
    return True


def update_repair_order_status(
    db: Session,
    scheduler: Scheduler,
    repair_order_id: int,
    new_status: str,
    *,
    user_id: str,
    destination_sheet: str | None = None,
    force_push: bool = False,
) -> RepairOrder:
    """
    Set a new status and fan out: push, follow-up flow for tracked statuses,
    and a sheet move when ``destination_sheet`` is given.

    Writing the status it already has is a no-op.
    """
    record = get_repair_order(db, repair_order_id)
    if record is None:
        raise LookupError(f"Repair order {repair_order_id} not found")

    if not apply_status_change(db, record, new_status):
        if force_push:
            request_push(db, scheduler, [record.id], user_id=user_id)
        return record
    today = record.current_status_date

    # An archived record is removed from the active sheet by the move instead.
    if destination_sheet is None:
        request_push(db, scheduler, [record.id], user_id=user_id)

    status_key = normalize_status_key(record.current_status)
    if is_tracked_status(status_key):
        _trigger_safely(
            db,
            scheduler,
            JobType.RO_LIFECYCLE_START,
            {"repair_order_id": record.id, "new_status": status_key, "user_id": user_id},
            repair_order_id=record.id,
            idempotency_key=f"ro-lifecycle-start:{record.id}:{status_key}:{today}",
        )

    if destination_sheet and destination_sheet != record.sheet:
        _trigger_safely(
            db,
            scheduler,
            JobType.MOVE_RO_SHEET,
            {
                "user_id": user_id,
                "repair_order_id": record.id,
                "from_sheet": record.sheet,
                "to_sheet": destination_sheet,
            },
            repair_order_id=record.id,
        )
    return record


def resolve_archive_destination(destination: str) -> tuple[str, str]:
    """Map an archive destination ("returns", "paid", "net") to (status, sheet)."""
    key = destination.strip().lower()
    if key not in ARCHIVE_DESTINATIONS:
        raise ValueError(f"Unknown archive destination: {destination}")
    return ARCHIVE_DESTINATIONS[key]


def archive_repair_order(
    db: Session,
    scheduler: Scheduler,
    repair_order_id: int,
    destination: str,
    *,
    user_id: str,
) -> Any:
    """Schedule the archive job: set the archive status, then move the row."""
    resolve_archive_destination(destination)
    if get_repair_order(db, repair_order_id) is None:
        raise LookupError(f"Repair order {repair_order_id} not found")
    return scheduler.trigger(
        JobType.ARCHIVE_REPAIR_ORDER,
        {
            "user_id": user_id,
            "repair_order_id": repair_order_id,
            "destination": destination.strip().lower(),
        },
        idempotency_key=f"archive:{repair_order_id}:{destination.strip().lower()}",
    )
