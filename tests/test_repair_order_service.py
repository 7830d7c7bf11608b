from datetime import date

import pytest

from ro_sync.db.enums import JobType
from ro_sync.services import repair_order_service


def test_status_change_pushes_and_starts_follow_up_flow(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100, current_status="Received")

    repair_order_service.update_repair_order_status(
        db, scheduler, record.id, "Waiting Quote", user_id="user-1"
    )

    today = date.today().isoformat()
    assert record.current_status == "Waiting Quote"
    assert record.current_status_date == today
    assert record.last_date_updated == today
    assert scheduler.triggered_types() == [JobType.PUSH_REPAIR_ORDERS, JobType.RO_LIFECYCLE_START]
    _, payload, key = scheduler.triggered[1]
    assert payload == {"repair_order_id": record.id, "new_status": "WAITING QUOTE", "user_id": "user-1"}
    assert key == f"ro-lifecycle-start:{record.id}:WAITING QUOTE:{today}"


def test_same_status_is_a_no_op(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100, current_status="WAITING QUOTE", current_status_date="2024-01-01")

    repair_order_service.update_repair_order_status(
        db, scheduler, record.id, " waiting quote ", user_id="user-1"
    )

    assert record.current_status_date == "2024-01-01"
    assert scheduler.triggered == []


def test_untracked_status_only_pushes(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100, current_status="Approved")

    repair_order_service.update_repair_order_status(db, scheduler, record.id, "BER", user_id="user-1")

    assert scheduler.triggered_types() == [JobType.PUSH_REPAIR_ORDERS]


def test_status_with_destination_moves_instead_of_pushing(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100, current_status="Received")

    repair_order_service.update_repair_order_status(
        db, scheduler, record.id, "PAID", user_id="user-1", destination_sheet="Paid"
    )

    assert scheduler.triggered_types() == [JobType.MOVE_RO_SHEET]
    assert scheduler.triggered[0][1] == {
        "user_id": "user-1",
        "repair_order_id": record.id,
        "from_sheet": "Active",
        "to_sheet": "Paid",
    }


def test_field_edits_with_status_push_once(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100, current_status="Approved", notes="old")

    repair_order_service.update_repair_order(
        db, scheduler, record.id, {"notes": "new", "current_status": "APPROVED"}, user_id="user-1"
    )

    assert record.notes == "new"
    assert scheduler.triggered_types() == [JobType.PUSH_REPAIR_ORDERS]


def test_unknown_fields_are_rejected(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100)

    with pytest.raises(ValueError):
        repair_order_service.update_repair_order(
            db, scheduler, record.id, {"sheet": "Paid"}, user_id="user-1"
        )


def test_create_with_tracked_status_starts_flow(db, scheduler):
    record = repair_order_service.create_repair_order(
        db,
        scheduler,
        user_id="user-1",
        values={"ro_number": 200, "shop_name": "Acme Aero", "current_status": "Shipped"},
    )

    assert record.id is not None
    assert record.current_status_date == date.today().isoformat()
    assert scheduler.triggered_types() == [JobType.PUSH_REPAIR_ORDERS, JobType.RO_LIFECYCLE_START]


def test_scheduling_failure_does_not_undo_the_write(db, make_repair_order):
    class BrokenScheduler:
        def trigger(self, job_type, payload, *, idempotency_key=None):
            raise RuntimeError("queue unavailable")

    record = make_repair_order(ro_number=100, current_status="Received")

    repair_order_service.update_repair_order_status(
        db, BrokenScheduler(), record.id, "SHIPPED", user_id="user-1"
    )

    db.expire_all()
    assert repair_order_service.get_repair_order(db, record.id).current_status == "SHIPPED"


@pytest.mark.parametrize(
    "destination, expected",
    [("returns", ("RETURNS", "Returns")), ("Paid", ("PAID", "Paid")), (" net ", ("NET", "NET"))],
)
def test_resolve_archive_destination(destination, expected):
    assert repair_order_service.resolve_archive_destination(destination) == expected


def test_archive_schedules_one_keyed_job(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100)

    repair_order_service.archive_repair_order(db, scheduler, record.id, "Paid", user_id="user-1")

    job_type, payload, key = scheduler.triggered[0]
    assert job_type == JobType.ARCHIVE_REPAIR_ORDER
    assert payload["destination"] == "paid"
    assert key == f"archive:{record.id}:paid"


def test_archive_rejects_unknown_destination(db, scheduler, make_repair_order):
    record = make_repair_order(ro_number=100)

    with pytest.raises(ValueError):
        repair_order_service.archive_repair_order(db, scheduler, record.id, "scrap", user_id="user-1")
    assert scheduler.triggered == []
