from datetime import date, timedelta

import pytest

from ro_sync.db.enums import JobType, LifecycleOutcome
from ro_sync.db.models import NotificationQueueItem
from ro_sync.services import lifecycle_service


TODAY = date(2024, 3, 1)


def _start(db, scheduler, record, status):
    return lifecycle_service.handle_status_change(
        db,
        scheduler,
        repair_order_id=record.id,
        new_status=status,
        user_id="user-1",
        today=TODAY,
    )


def _recheck(db, record, status):
    return lifecycle_service.recheck_status(
        db, repair_order_id=record.id, status=status, user_id="user-1"
    )


def test_waiting_quote_schedules_reminders_and_a_seven_day_recheck(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=38462, shop_name="Acme Aero", part="PN-1", current_status="Waiting Quote")

    result = _start(db, scheduler, record, "Waiting Quote")

    assert result.outcome == LifecycleOutcome.WATCHING
    assert result.wake_at == (TODAY + timedelta(days=7)).isoformat()
    assert scheduler.triggered_types() == [JobType.CREATE_FOLLOW_UP_REMINDERS]
    reminder_payload = scheduler.triggered[0][1]
    assert reminder_payload["due_date"] == "2024-03-08"
    assert "G38462" in reminder_payload["title"]

    job_type, payload, duration, key = scheduler.slept[0]
    assert job_type == JobType.RO_LIFECYCLE_RECHECK
    assert payload == {"repair_order_id": record.id, "status": "WAITING QUOTE", "user_id": "user-1"}
    assert duration == timedelta(days=7)
    assert key == f"ro-lifecycle:{record.id}:waiting_quote:2024-03-01:recheck"


@pytest.mark.parametrize(
    "status, days",
    [("APPROVED", 10), ("in work", 10), ("Shipped", 5), ("IN TRANSIT", 5)],
)
def test_wait_interval_depends_on_status(db, scheduler, make_repair_order, status, days):
    record = make_repair_order(ro_number=1, current_status=status)

    _start(db, scheduler, record, status)

    assert scheduler.slept[0][2] == timedelta(days=days)


def test_untracked_status_is_skipped(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=1, current_status="BER")

    result = _start(db, scheduler, record, "BER")

    assert result.outcome == LifecycleOutcome.SKIPPED
    assert scheduler.triggered == []
    assert scheduler.slept == []


def test_received_with_net_terms_creates_payment_reminder(db, scheduler, make_repair_order):
    record = make_repair_order(
        ro_number=1,
        terms="NET 45",
        estimated_cost=1500.0,
        current_status="RECEIVED",
        current_status_date="2024-03-01",
    )

    result = _start(db, scheduler, record, "RECEIVED")

    assert result.outcome == LifecycleOutcome.REMINDER_CREATED
    assert result.wake_at == "2024-04-15"
    assert scheduler.slept == []
    payload = scheduler.triggered[0][1]
    assert payload["due_date"] == "2024-04-15"
    assert payload["title"].startswith("PAYMENT DUE")
    assert "$1,500.00" in payload["body"]


def test_received_without_net_terms_is_skipped(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=1, terms="COD", current_status="RECEIVED")

    result = _start(db, scheduler, record, "RECEIVED")

    assert result.outcome == LifecycleOutcome.SKIPPED
    assert scheduler.triggered == []


@pytest.mark.parametrize(
    "terms, expected",
    [("NET 30", 30), ("net60", 60), ("Net-45", 45), ("30 days", 30), ("COD", None), (None, None)],
)
def test_parse_payment_terms_days(terms, expected):
    assert lifecycle_service.parse_payment_terms_days(terms) == expected


def test_unchanged_status_drafts_one_follow_up(db, scheduler, make_repair_order, make_shop):
    make_shop("Acme Aero", "quotes@acme.example")
    record = make_repair_order(ro_number=38462, shop_name="Acme Aero", part="PN-1", current_status="Waiting Quote")
    _start(db, scheduler, record, "Waiting Quote")

    result = _recheck(db, record, "WAITING QUOTE")

    assert result.outcome == LifecycleOutcome.EMAIL_DRAFTED
    items = db.query(NotificationQueueItem).all()
    assert len(items) == 1
    assert items[0].id == result.notification_id
    assert items[0].status == "PENDING_APPROVAL"
    assert items[0].payload["to"] == "quotes@acme.example"
    assert items[0].payload["subject"] == "Follow-up: RO# G38462"
    assert "PN-1" in items[0].payload["body"]


def test_changed_status_ends_without_a_draft(db, scheduler, make_repair_order, make_shop):
    make_shop("Acme Aero", "quotes@acme.example")
    record = make_repair_order(ro_number=38462, shop_name="Acme Aero", current_status="Waiting Quote")
    _start(db, scheduler, record, "Waiting Quote")

    record.current_status = "Approved"
    db.commit()
    result = _recheck(db, record, "WAITING QUOTE")

    assert result.outcome == LifecycleOutcome.STATUS_RESOLVED
    assert db.query(NotificationQueueItem).count() == 0


def test_recheck_without_shop_email_is_skipped(db, make_repair_order):
    record = make_repair_order(ro_number=1, shop_name="Unknown Shop", current_status="Shipped")

    result = _recheck(db, record, "SHIPPED")

    assert result.outcome == LifecycleOutcome.SKIPPED
    assert db.query(NotificationQueueItem).count() == 0


def test_repeated_recheck_keeps_a_single_pending_draft(db, make_repair_order, make_shop):
    make_shop("Acme Aero", "quotes@acme.example")
    record = make_repair_order(ro_number=1, shop_name="Acme Aero", current_status="Approved")

    first = _recheck(db, record, "APPROVED")
    second = _recheck(db, record, "APPROVED")

    assert first.notification_id == second.notification_id
    assert db.query(NotificationQueueItem).count() == 1
