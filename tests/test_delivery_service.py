from datetime import date
import uuid

import httpx
import pytest

from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.db.enums import JobType, NotificationStatus, NotificationType
from ro_sync.services import delivery_service, notification_queue_service


TODAY = date(2024, 3, 1)


@pytest.fixture
def client_factory(mailbox):
    calls = []

    async def _factory(user_id):
        calls.append(user_id)
        return mailbox

    _factory.calls = calls
    return _factory


def _approved(db, record, payload=None, type=NotificationType.EMAIL_DRAFT):
    notification_id = notification_queue_service.enqueue(
        db,
        repair_order_id=record.id,
        user_id="user-1",
        type=type,
        payload=payload
        if payload is not None
        else {"to": "quotes@acme.example", "subject": "Follow-up: RO# G100", "body": "Hi"},
    )
    notification_queue_service.approve(db, notification_id)
    return notification_id


async def _deliver(db, scheduler, client_factory, notification_id, batched_ids=None):
    return await delivery_service.deliver_notification(
        db, scheduler, client_factory, notification_id, batched_ids, today=TODAY
    )


@pytest.mark.asyncio
async def test_delivery_sends_and_records_side_effects(
    db, scheduler, mailbox, client_factory, make_repair_order, make_shop
):
    make_shop("Acme Aero", "old@acme.example")
    record = make_repair_order(ro_number=100, shop_name="Acme Aero")
    notification_id = _approved(db, record)

    result = await _deliver(db, scheduler, client_factory, notification_id)

    assert result.outcome == "sent"
    assert len(mailbox.sent) == 1
    assert mailbox.sent[0]["subject"].endswith("Follow-up: RO# G100")
    item = notification_queue_service.get_notification(db, notification_id)
    assert item.status == "SENT"
    assert item.outlook_message_id == "<msg-1@example.com>"
    assert item.outlook_conversation_id == "conv-1"

    db.refresh(record)
    assert record.last_date_updated == "2024-03-01"
    assert record.next_date_to_update == "2024-03-08"

    assert scheduler.triggered_types() == [JobType.UPDATE_SHOP_CONTACT, JobType.PUSH_REPAIR_ORDERS]
    assert scheduler.triggered[0][1] == {"shop_name": "Acme Aero", "email": "quotes@acme.example"}
    assert scheduler.triggered[1][1] == {"user_id": "user-1", "repair_order_ids": [record.id]}


@pytest.mark.asyncio
async def test_contact_update_skipped_when_address_matches(
    db, scheduler, client_factory, make_repair_order, make_shop
):
    make_shop("Acme Aero", "Quotes@Acme.example")
    record = make_repair_order(ro_number=100, shop_name="Acme Aero")
    notification_id = _approved(db, record)

    await _deliver(db, scheduler, client_factory, notification_id)

    assert scheduler.triggered_types() == [JobType.PUSH_REPAIR_ORDERS]


@pytest.mark.asyncio
async def test_second_delivery_of_sent_notification_is_skipped(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(db, record)

    first = await _deliver(db, scheduler, client_factory, notification_id)
    second = await _deliver(db, scheduler, client_factory, notification_id)
    third = await _deliver(db, scheduler, client_factory, notification_id)

    assert first.outcome == "sent"
    assert second.outcome == "skipped"
    assert third.outcome == "skipped"
    assert len(mailbox.sent) == 1
    assert client_factory.calls == ["user-1"]


@pytest.mark.asyncio
async def test_pending_notification_is_not_sent(db, scheduler, mailbox, client_factory, make_repair_order):
    record = make_repair_order(ro_number=100)
    notification_id = notification_queue_service.enqueue(
        db,
        repair_order_id=record.id,
        user_id="user-1",
        type=NotificationType.EMAIL_DRAFT,
        payload={"to": "quotes@acme.example", "subject": "s", "body": "b"},
    )

    result = await _deliver(db, scheduler, client_factory, notification_id)

    assert result.outcome == "skipped"
    assert result.reason == "not approved"
    assert mailbox.sent == []
    assert notification_queue_service.get_notification(db, notification_id).status == "PENDING_APPROVAL"


@pytest.mark.asyncio
async def test_missing_recipient_fails_without_sending(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(db, record, payload={"to": "  ", "subject": "s", "body": "b"})

    result = await _deliver(db, scheduler, client_factory, notification_id)

    assert result.outcome == "failed"
    item = notification_queue_service.get_notification(db, notification_id)
    assert item.status == "FAILED"
    assert "recipient" in item.last_error
    assert mailbox.sent == []
    assert client_factory.calls == []
    assert scheduler.triggered == []


@pytest.mark.asyncio
async def test_follow_up_replies_on_the_earlier_thread(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    first = _approved(db, record)
    await _deliver(db, scheduler, client_factory, first)
    mailbox.known_messages["<msg-1@example.com>"] = "graph-1"

    second = _approved(db, record)
    await _deliver(db, scheduler, client_factory, second)

    assert len(mailbox.sent) == 1
    assert len(mailbox.replies) == 1
    assert mailbox.replies[0][0] == "graph-1"


@pytest.mark.asyncio
async def test_batched_siblings_are_marked_sent_with_primary(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    a = make_repair_order(ro_number=100)
    b = make_repair_order(ro_number=101)
    primary = _approved(db, a)
    sibling = notification_queue_service.enqueue(
        db,
        repair_order_id=b.id,
        user_id="user-1",
        type=NotificationType.EMAIL_DRAFT,
        payload={"to": "quotes@acme.example", "subject": "s", "body": "b"},
    )

    result = await _deliver(db, scheduler, client_factory, primary, [sibling])

    assert result.repair_order_ids == [a.id, b.id]
    assert len(mailbox.sent) == 1
    sibling_item = notification_queue_service.get_notification(db, sibling)
    assert sibling_item.status == "SENT"
    assert sibling_item.outlook_message_id == "<msg-1@example.com>"
    db.refresh(b)
    assert b.next_date_to_update == "2024-03-08"
    assert scheduler.triggered[-1][1]["repair_order_ids"] == [a.id, b.id]


@pytest.mark.asyncio
async def test_send_error_propagates_and_leaves_notification_approved(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(db, record)
    mailbox.fail_send = True

    with pytest.raises(GraphAPIError):
        await _deliver(db, scheduler, client_factory, notification_id)

    assert notification_queue_service.get_notification(db, notification_id).status == "APPROVED"
    assert scheduler.triggered == []


@pytest.mark.asyncio
async def test_failed_sent_items_lookup_after_send_does_not_resend(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(db, record)
    mailbox.sent_lookup_errors.append(RateLimitedError())

    first = await _deliver(db, scheduler, client_factory, notification_id)
    second = await _deliver(db, scheduler, client_factory, notification_id)

    assert first.outcome == "sent"
    assert first.message_id is None
    assert second.outcome == "skipped"
    assert len(mailbox.sent) == 1
    item = notification_queue_service.get_notification(db, notification_id)
    assert item.status == "SENT"
    assert item.outlook_message_id is None


@pytest.mark.asyncio
async def test_task_reminder_creates_task_and_event(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(
        db,
        record,
        payload={"title": "Call Acme", "notes": "Ask about quote", "due_date": "2024-03-05"},
        type=NotificationType.TASK_REMINDER,
    )

    result = await _deliver(db, scheduler, client_factory, notification_id)

    assert result.outcome == "sent"
    assert len(mailbox.tasks) == 1
    assert mailbox.tasks[0]["dueDateTime"]["dateTime"] == "2024-03-05"
    assert len(mailbox.events) == 1
    assert mailbox.sent == []
    assert notification_queue_service.get_notification(db, notification_id).status == "SENT"


def test_exhaustion_hook_marks_approved_notifications_failed(db, make_repair_order):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(db, record)
    job = type(
        "Job",
        (),
        {
            "id": uuid.uuid4(),
            "attempts": 3,
            "last_error": "Service unavailable",
            "payload": {"notification_id": notification_id},
        },
    )()

    delivery_service.mark_delivery_exhausted(db, job, None)

    item = notification_queue_service.get_notification(db, notification_id)
    assert item.status == NotificationStatus.FAILED.value
    assert "3 attempts" in item.last_error


@pytest.mark.asyncio
async def test_task_reminder_is_sent_once_when_calendar_times_out(
    db, scheduler, mailbox, client_factory, make_repair_order
):
    record = make_repair_order(ro_number=100)
    notification_id = _approved(
        db,
        record,
        payload={"title": "Call Acme", "due_date": "2024-03-05"},
        type=NotificationType.TASK_REMINDER,
    )
    mailbox.calendar_errors.append(httpx.ReadTimeout("calendar timed out"))

    first = await _deliver(db, scheduler, client_factory, notification_id)
    second = await _deliver(db, scheduler, client_factory, notification_id)

    assert first.outcome == "sent"
    assert second.outcome == "skipped"
    assert len(mailbox.tasks) == 1
    assert mailbox.events == []
    assert notification_queue_service.get_notification(db, notification_id).status == "SENT"
