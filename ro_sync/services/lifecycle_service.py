"""Repair-order follow-up flow.

On a tracked status change:

1. Reminder artifacts (To-Do task + calendar event) are requested as a
   separate best-effort job.
2. A recheck job is scheduled ``wait_days`` out. Nothing is held open
   across the wait.
3. On recheck, if the status moved on the flow ends as status_resolved.
4. Otherwise the shop's address is looked up (skipped when there is none)
   and a follow-up draft is queued for approval (email_drafted).

RECEIVED with NET terms is special: payment reminders are created for the
due date and the flow ends there (reminder_created).
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.core.constants import normalize_status_key
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.enums import JobType, LifecycleOutcome, NotificationType
from ro_sync.db.models import RepairOrder
from ro_sync.services import notification_queue_service, shop_service
from ro_sync.services.scheduler import Scheduler
from ro_sync.utils.date_parsing import parse_date

logger = logging.getLogger(__name__)

_NET_TERMS = re.compile(r"net\s*-?\s*(\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class FollowUpTemplate:
    """Per-status wait and message templates.

    Placeholders: {ro} (prefixed RO number), {part}, {shop}, {status},
    {dropped_off}, {company}.
    """

    wait_days: int
    subject: str
    body: str
    reminder_title: str
    reminder_action: str

    def render(self, record: RepairOrder, status: str) -> dict[str, str]:
        values = template_values(record, status)
        reminder_body = (
            "Repair Order# {ro}\nPart: {part}\nShop: {shop}\nStatus: {status}\n"
            "Dropped Off: {dropped_off}\n\n"
        ).format(**values) + self.reminder_action
        return {
            "subject": self.subject.format(**values),
            "body": self.body.format(**values),
            "reminder_title": self.reminder_title.format(**values),
            "reminder_body": reminder_body,
        }


_QUOTE = FollowUpTemplate(
    wait_days=7,
    subject="Follow-up: RO# {ro}",
    body=(
        "Hi Team,\n\nFollowing up on RO# {ro} for part {part}.\n\n"
        "Could you send over the quote when it is ready?\n\nThank you,\n{company}"
    ),
    reminder_title="Follow up on RO# {ro} - {part}",
    reminder_action="Ask the shop for a quote.",
)
_PROGRESS = FollowUpTemplate(
    wait_days=10,
    subject="Repair Status: RO# {ro}",
    body=(
        "Hi Team,\n\nChecking on the repair progress for RO# {ro}, part {part}.\n\n"
        "Please let us know where things stand or if you need anything from us.\n\n"
        "Thank you,\n{company}"
    ),
    reminder_title="Check repair progress: RO# {ro} - {part}",
    reminder_action="Ask the shop for a repair progress update.",
)
_SHIPPING = FollowUpTemplate(
    wait_days=5,
    subject="Tracking: RO# {ro}",
    body=(
        "Hi Team,\n\nCould you share tracking information for RO# {ro}, part {part}?\n\n"
        "Thank you,\n{company}"
    ),
    reminder_title="Check shipment: RO# {ro} - {part}",
    reminder_action="Ask the shop for shipment tracking.",
)

FOLLOW_UP_TEMPLATES: dict[str, FollowUpTemplate] = {
    "WAITING QUOTE": _QUOTE,
    "APPROVED": _PROGRESS,
    "IN WORK": _PROGRESS,
    "IN PROGRESS": _PROGRESS,
    "SHIPPED": _SHIPPING,
    "IN TRANSIT": _SHIPPING,
}

RECEIVED_STATUS = "RECEIVED"


@dataclass
class LifecycleResult:
    outcome: LifecycleOutcome
    repair_order_id: int
    status: str
    notification_id: int | None = None
    wake_at: str | None = None
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


def template_values(record: RepairOrder, status: str) -> dict[str, str]:
    ro = record.ro_number if record.ro_number is not None else record.id
    return {
        "ro": f"{settings.RO_DISPLAY_PREFIX}{ro}",
        "part": record.part or "Unknown Part",
        "shop": record.shop_name or "Repair Shop",
        "status": status,
        "dropped_off": record.date_dropped_off or "N/A",
        "company": settings.COMPANY_NAME,
    }


def get_follow_up_template(status: str | None) -> FollowUpTemplate | None:
    return FOLLOW_UP_TEMPLATES.get(normalize_status_key(status))


def parse_payment_terms_days(terms: str | None) -> int | None:
    """Days until payment for NET terms ("NET 30", "Net60", "net-45")."""
    if not terms:
        return None
    match = _NET_TERMS.search(terms)
    if match:
        return int(match.group(1))
    upper = terms.upper()
    if "NET" in upper or "30" in upper:
        return 30
    return None


def watch_key(repair_order_id: int, status: str, started_on: date) -> str:
    slug = normalize_status_key(status).replace(" ", "_").lower()
    return f"ro-lifecycle:{repair_order_id}:{slug}:{started_on.isoformat()}"


def _request_reminders(
    scheduler: Scheduler,
    *,
    user_id: str,
    repair_order_id: int,
    due_date: date,
    title: str,
    body: str,
    calendar_subject: str | None = None,
    idempotency_key: str,
) -> None:
    scheduler.trigger(
        JobType.CREATE_FOLLOW_UP_REMINDERS,
        {
            "user_id": user_id,
            "repair_order_id": repair_order_id,
            "due_date": due_date.isoformat(),
            "title": title,
            "body": body,
            "calendar_subject": calendar_subject or title,
        },
        idempotency_key=idempotency_key,
    )


def _handle_received(
    scheduler: Scheduler, record: RepairOrder, *, user_id: str, today: date
) -> LifecycleResult:
    days = parse_payment_terms_days(record.terms)
    if days is None:
        logger.info("RECEIVED without NET terms, skipping repair order %s", record.id)
        return LifecycleResult(
            outcome=LifecycleOutcome.SKIPPED,
            repair_order_id=record.id,
            status=RECEIVED_STATUS,
            reason="no NET payment terms",
        )

    base = parse_date(record.current_status_date) or today
    due = base + timedelta(days=days)
    values = template_values(record, RECEIVED_STATUS)
    cost = f"${record.estimated_cost:,.2f}" if record.estimated_cost is not None else "N/A"
    _request_reminders(
        scheduler,
        user_id=user_id,
        repair_order_id=record.id,
        due_date=due,
        title=f"PAYMENT DUE: RO# {values['ro']} - {values['shop']}",
        calendar_subject=f"PAYMENT DUE: RO# {values['ro']}",
        body=(
            f"Payment due for RO# {values['ro']}\nPart: {values['part']}\n"
            f"Shop: {values['shop']}\nAmount: {cost}\nTerms: {record.terms}\n"
            f"Due Date: {due.isoformat()}"
        ),
        idempotency_key=f"{watch_key(record.id, RECEIVED_STATUS, today)}:payment",
    )
    return LifecycleResult(
        outcome=LifecycleOutcome.REMINDER_CREATED,
        repair_order_id=record.id,
        status=RECEIVED_STATUS,
        wake_at=due.isoformat(),
    )


def handle_status_change(
    db: Session,
    scheduler: Scheduler,
    *,
    repair_order_id: int,
    new_status: str,
    user_id: str,
    today: date | None = None,
) -> LifecycleResult:
    """Start watching a status. Safe to re-run for the same change on the same day."""
    today = today or date.today()
    status = normalize_status_key(new_status)
    record = db.get(RepairOrder, repair_order_id)
    if record is None:
        return LifecycleResult(
            outcome=LifecycleOutcome.SKIPPED,
            repair_order_id=repair_order_id,
            status=status,
            reason="repair order not found",
        )

    if status == RECEIVED_STATUS:
        return _handle_received(scheduler, record, user_id=user_id, today=today)

    template = get_follow_up_template(status)
    if template is None:
        logger.info("Status %s has no follow-up configured", status)
        return LifecycleResult(
            outcome=LifecycleOutcome.SKIPPED,
            repair_order_id=repair_order_id,
            status=status,
            reason="status not tracked",
        )

    key = watch_key(repair_order_id, status, today)
    follow_up_on = today + timedelta(days=template.wait_days)
    rendered = template.render(record, status)
    _request_reminders(
        scheduler,
        user_id=user_id,
        repair_order_id=repair_order_id,
        due_date=follow_up_on,
        title=rendered["reminder_title"],
        body=rendered["reminder_body"],
        idempotency_key=f"{key}:reminders",
    )
    scheduler.sleep(
        JobType.RO_LIFECYCLE_RECHECK,
        {"repair_order_id": repair_order_id, "status": status, "user_id": user_id},
        duration=timedelta(days=template.wait_days),
        idempotency_key=f"{key}:recheck",
    )
    logger.info(
        "Watching status %s for %s days",
        status,
        template.wait_days,
        extra=build_log_context(repair_order_id=repair_order_id),
    )
    return LifecycleResult(
        outcome=LifecycleOutcome.WATCHING,
        repair_order_id=repair_order_id,
        status=status,
        wake_at=follow_up_on.isoformat(),
    )


def build_follow_up_payload(db: Session, record: RepairOrder, status: str) -> dict[str, Any] | None:
    """Email draft payload for the record, or None when no address resolves."""
    template = get_follow_up_template(status)
    if template is None:
        return None
    to = shop_service.get_shop_email(db, record.shop_name)
    if not to:
        return None
    rendered = template.render(record, status)
    return {
        "to": to,
        "cc": settings.FOLLOW_UP_CC_EMAIL or None,
        "subject": rendered["subject"],
        "body": rendered["body"],
    }


def recheck_status(
    db: Session,
    *,
    repair_order_id: int,
    status: str,
    user_id: str,
) -> LifecycleResult:
    """Continuation after the wait: draft a follow-up if nothing changed."""
    status = normalize_status_key(status)
    record = db.get(RepairOrder, repair_order_id)
    if record is None or normalize_status_key(record.current_status) != status:
        logger.info(
            "Status %s resolved before follow-up",
            status,
            extra=build_log_context(repair_order_id=repair_order_id),
        )
        return LifecycleResult(
            outcome=LifecycleOutcome.STATUS_RESOLVED,
            repair_order_id=repair_order_id,
            status=status,
        )

    payload = build_follow_up_payload(db, record, status)
    if payload is None:
        logger.warning(
            "No contact address for shop, skipping follow-up",
            extra=build_log_context(repair_order_id=repair_order_id),
        )
        return LifecycleResult(
            outcome=LifecycleOutcome.SKIPPED,
            repair_order_id=repair_order_id,
            status=status,
            reason="no contact address",
        )

    notification_id = notification_queue_service.enqueue(
        db,
        repair_order_id=repair_order_id,
        user_id=user_id,
        type=NotificationType.EMAIL_DRAFT,
        payload=payload,
    )
    return LifecycleResult(
        outcome=LifecycleOutcome.EMAIL_DRAFTED,
        repair_order_id=repair_order_id,
        status=status,
        notification_id=notification_id,
    )
