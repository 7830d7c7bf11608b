"""Follow-up lifecycle job handlers."""

from __future__ import annotations

import logging

import httpx

from ro_sync.core.errors import AuthenticationError, GraphAPIError, RateLimitedError
from ro_sync.core.structured_logging import build_log_context
from ro_sync.jobs.utils import require_payload, store_result
from ro_sync.services import graph_service, lifecycle_service, productivity_service
from ro_sync.services.scheduler import JobQueueScheduler
from ro_sync.utils.date_parsing import parse_date

logger = logging.getLogger(__name__)


async def process_ro_lifecycle_start(db, job) -> None:
    """Start watching a status after it was written."""
    payload = require_payload(job, "repair_order_id", "new_status", "user_id")
    result = lifecycle_service.handle_status_change(
        db,
        JobQueueScheduler(db),
        repair_order_id=int(payload["repair_order_id"]),
        new_status=payload["new_status"],
        user_id=payload["user_id"],
    )
    store_result(job, result.as_dict())


async def process_ro_lifecycle_recheck(db, job) -> None:
    """Continuation after the wait: draft a follow-up if the status held."""
    payload = require_payload(job, "repair_order_id", "status", "user_id")
    result = lifecycle_service.recheck_status(
        db,
        repair_order_id=int(payload["repair_order_id"]),
        status=payload["status"],
        user_id=payload["user_id"],
    )
    store_result(job, result.as_dict())


async def process_create_follow_up_reminders(db, job) -> None:
    """
    Create a To-Do task and a calendar event for a follow-up date.

    Best effort: Graph and credential errors are logged and the job still
    completes, so reminders never hold up the follow-up flow.

    Payload:
        - user_id, repair_order_id, due_date (ISO), title, body
        - calendar_subject (optional, defaults to title)
    """
    payload = require_payload(job, "user_id", "due_date", "title")
    due_date = parse_date(payload["due_date"])
    if due_date is None:
        logger.warning("Reminder job %s has an unreadable due date", job.id)
        store_result(job, {"task_created": False, "event_created": False})
        return

    log_extra = build_log_context(job_id=str(job.id), repair_order_id=payload.get("repair_order_id"))
    result = {"task_created": False, "event_created": False}
    try:
        async with await graph_service.get_graph_client(db, payload["user_id"]) as client:
            try:
                await productivity_service.create_todo_task(
                    client,
                    title=payload["title"],
                    due_date=due_date,
                    content=payload.get("body") or "",
                )
                result["task_created"] = True
            except (GraphAPIError, RateLimitedError, httpx.HTTPError) as e:
                logger.warning("To-Do task not created: %s", type(e).__name__, extra=log_extra)

            try:
                await productivity_service.create_calendar_event(
                    client,
                    subject=payload.get("calendar_subject") or payload["title"],
                    day=due_date,
                    description=payload.get("body") or "",
                )
                result["event_created"] = True
            except (GraphAPIError, RateLimitedError, httpx.HTTPError) as e:
                logger.warning("Calendar event not created: %s", type(e).__name__, extra=log_extra)
    except AuthenticationError as e:
        logger.warning("Reminders skipped: %s", type(e).__name__, extra=log_extra)

    store_result(job, result)
