"""Workbook replication job handlers (push, pull, move, archive)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ro_sync.core.config import settings
from ro_sync.core.errors import RetryableError, TerminalJobError
from ro_sync.db.enums import JobType
from ro_sync.jobs.utils import require_payload, store_result
from ro_sync.services import graph_service, replication_service, repair_order_service
from ro_sync.services.excel_batch_service import workbook_session
from ro_sync.services.scheduler import JobQueueScheduler

logger = logging.getLogger(__name__)


async def process_push_repair_orders(db, job) -> None:
    """
    Push store records to the workbook.

    Payload:
        - user_id: mailbox/drive owner whose credentials are used
        - repair_order_ids: store primary keys to upsert
        - sheet: target sheet (optional, defaults to the active sheet)
    """
    payload = require_payload(job, "user_id", "repair_order_ids")
    ids = [int(value) for value in payload["repair_order_ids"]]

    async with await graph_service.get_graph_client(db, payload["user_id"]) as client:
        async with workbook_session(client) as session:
            result = await replication_service.push_repair_orders(
                db, session, ids, sheet=payload.get("sheet")
            )

    store_result(job, result.as_dict())
    logger.info(
        "Push job %s updated=%s added=%s skipped=%s",
        job.id,
        result.updated_count,
        result.added_count,
        result.skipped_count,
    )


async def process_pull_repair_orders(db, job) -> None:
    """Pull every row of a sheet into the store (workbook wins)."""
    payload = require_payload(job, "user_id")
    started_at = datetime.now(timezone.utc)

    async with await graph_service.get_graph_client(db, payload["user_id"]) as client:
        async with workbook_session(client) as session:
            result = await replication_service.pull_repair_orders(
                db, session, sheet=payload.get("sheet"), started_at=started_at
            )

    store_result(job, result.as_dict())
    if result.overwritten_count:
        logger.warning(
            "Pull job %s overwrote %s concurrent store edits",
            job.id,
            result.overwritten_count,
        )


async def process_move_ro_sheet(db, job) -> None:
    """
    Move one repair order's row between sheets.

    Payload:
        - user_id, repair_order_id, from_sheet, to_sheet
    """
    payload = require_payload(job, "user_id", "repair_order_id", "from_sheet", "to_sheet")

    async with await graph_service.get_graph_client(db, payload["user_id"]) as client:
        async with workbook_session(client) as session:
            result = await replication_service.move_repair_order(
                db,
                session,
                int(payload["repair_order_id"]),
                payload["from_sheet"],
                payload["to_sheet"],
            )

    store_result(job, result.as_dict())
    if result.success:
        return
    if result.ro_number is None:
        raise TerminalJobError(result.error or "Repair order cannot be moved")
    raise RetryableError(result.error or "Move failed")


async def process_archive_repair_order(db, job) -> None:
    """
    Archive a repair order: set the archive status, then move its row.

    The move runs inline so its outcome is recorded on this job. Re-running
    after a completed move does nothing.
    """
    payload = require_payload(job, "user_id", "repair_order_id", "destination")
    repair_order_id = int(payload["repair_order_id"])
    try:
        status, sheet = repair_order_service.resolve_archive_destination(payload["destination"])
    except ValueError as e:
        raise TerminalJobError(str(e)) from e

    record = repair_order_service.get_repair_order(db, repair_order_id)
    if record is None:
        raise TerminalJobError(f"Repair order {repair_order_id} not found")

    repair_order_service.apply_status_change(db, record, status)
    if record.sheet == sheet:
        store_result(job, {"status": record.current_status, "sheet": sheet, "moved": False})
        return

    scheduler = JobQueueScheduler(db)
    move = await scheduler.trigger_and_wait(
        JobType.MOVE_RO_SHEET,
        {
            "user_id": payload["user_id"],
            "repair_order_id": repair_order_id,
            "from_sheet": record.sheet or settings.EXCEL_ACTIVE_SHEET,
            "to_sheet": sheet,
        },
    )
    store_result(job, {"status": record.current_status, "sheet": sheet, "moved": True, "move": move})
