"""Replication between the repair-order store and the Excel workbook.

Three operations, each run inside a caller-owned workbook session:

- push: store -> workbook, upsert rows by RO number
- pull: workbook -> store, workbook wins on conflict
- move: copy a row to another sheet, then delete the source row
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ro_sync.core.config import settings
from ro_sync.core.constants import is_archived_status
from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.core.structured_logging import build_log_context
from ro_sync.db.models import RepairOrder
from ro_sync.services import excel_search_service
from ro_sync.services.excel_batch_service import (
    WorkbookSession,
    analyze_batch_response,
    build_row_delete_request,
    build_row_update_request,
    chunk_requests,
    execute_batch,
    raise_if_rate_limited,
)
from ro_sync.services.excel_mapping import (
    apply_record_values,
    excel_row_to_record,
    record_to_excel_row,
)

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class PushResult:
    updated_count: int = 0
    added_count: int = 0
    skipped_count: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PullResult:
    total_rows: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    # Store edits made after the pull started that the workbook overwrote.
    overwritten_count: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MoveResult:
    success: bool
    ro_number: int | None
    from_sheet: str
    to_sheet: str
    source_row: int | None = None
    destination_row: int | None = None
    source_deleted: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Push
# =============================================================================


async def push_repair_orders(
    db: Session,
    session: WorkbookSession,
    repair_order_ids: list[int],
    *,
    sheet: str | None = None,
) -> PushResult:
    """
    Upsert the given records into the sheet.

    Records without an RO number, with an archived status, or living on
    another sheet are skipped: writing them here would resurrect a row
    after a move.
    A rate-limited response anywhere aborts the whole push with
    RateLimitedError so the job is retried as a unit.
    """
    sheet = sheet or settings.EXCEL_ACTIVE_SHEET
    result = PushResult()
    if not repair_order_ids:
        return result

    records = (
        db.query(RepairOrder)
        .filter(RepairOrder.id.in_(repair_order_ids))
        .order_by(RepairOrder.id)
        .all()
    )
    eligible: list[RepairOrder] = []
    for record in records:
        if record.ro_number is None:
            result.skipped_count += 1
            continue
        if is_archived_status(record.current_status):
            logger.info(
                "Skipping push of archived repair order %s status=%s",
                record.id,
                record.current_status,
                extra=build_log_context(repair_order_id=record.id, sheet=sheet),
            )
            result.skipped_count += 1
            continue
        if (record.sheet or settings.EXCEL_ACTIVE_SHEET) != sheet:
            logger.info(
                "Skipping push of repair order %s on sheet %s",
                record.id,
                record.sheet,
                extra=build_log_context(repair_order_id=record.id, sheet=sheet),
            )
            result.skipped_count += 1
            continue
        eligible.append(record)

    if not eligible:
        return result

    rows = await excel_search_service.find_rows_by_ro(
        session, sheet, [record.ro_number for record in eligible]
    )
    next_row: int | None = None

    requests: list[dict[str, Any]] = []
    is_add: dict[str, bool] = {}
    for index, record in enumerate(eligible, start=1):
        row = rows.get(record.ro_number)
        added = row is None
        if added:
            if next_row is None:
                next_row = await excel_search_service.get_next_available_row(session, sheet)
            row = next_row
            next_row += 1
            rows[record.ro_number] = row
        request = build_row_update_request(
            index, session.workbook_path, sheet, row, record_to_excel_row(record)
        )
        requests.append(request)
        is_add[request["id"]] = added

    updated = added_rows = 0
    errors: list[str] = []
    for chunk in chunk_requests(requests):
        responses = await execute_batch(session, chunk)
        analysis = analyze_batch_response(responses)
        raise_if_rate_limited(analysis)
        errors.extend(analysis.error_messages)
        for response in responses:
            if not response.ok:
                continue
            if is_add.get(response.id):
                added_rows += 1
            else:
                updated += 1

    # Counts are only reported once every chunk went through.
    result.updated_count = updated
    result.added_count = added_rows
    result.errors = errors
    logger.info(
        "Push complete sheet=%s updated=%s added=%s skipped=%s errors=%s",
        sheet,
        result.updated_count,
        result.added_count,
        result.skipped_count,
        len(result.errors),
    )
    return result


# =============================================================================
# Pull
# =============================================================================


async def pull_repair_orders(
    db: Session,
    session: WorkbookSession,
    *,
    sheet: str | None = None,
    started_at: datetime | None = None,
) -> PullResult:
    """
    Import every data row of the sheet into the store.

    The workbook wins: matching records are overwritten. Store edits made
    after ``started_at`` are still overwritten, but counted in
    ``overwritten_count`` and logged so the race is visible. Row failures
    are collected and never abort the run. Store records are never deleted.
    """
    sheet = sheet or settings.EXCEL_ACTIVE_SHEET
    started_at = _as_utc(started_at or _now_utc())
    result = PullResult()

    rows = await excel_search_service.read_all_rows(session, sheet)
    result.total_rows = len(rows)

    parsed: list[tuple[int, dict[str, Any]]] = []
    for row_index, cells in rows:
        values = excel_row_to_record(cells)
        if values is None:
            result.skipped_count += 1
            continue
        parsed.append((row_index, values))

    ro_numbers = {values["ro_number"] for _, values in parsed}
    id_by_ro: dict[int, int] = {}
    # Records this run already wrote; their updated_at is our own.
    written_ids: set[int] = set()
    if ro_numbers:
        matches = (
            db.query(RepairOrder.id, RepairOrder.ro_number)
            .filter(RepairOrder.ro_number.in_(ro_numbers))
            .order_by(RepairOrder.id)
            .all()
        )
        for record_id, ro_number in matches:
            id_by_ro.setdefault(ro_number, record_id)

    for row_index, values in parsed:
        ro_number = values["ro_number"]
        try:
            record_id = id_by_ro.get(ro_number)
            if record_id is not None:
                record = db.get(RepairOrder, record_id)
                if (
                    record.id not in written_ids
                    and record.updated_at
                    and _as_utc(record.updated_at) > started_at
                ):
                    result.overwritten_count += 1
                    logger.warning(
                        "Pull overwrote a concurrent store edit ro=%s",
                        ro_number,
                        extra=build_log_context(repair_order_id=record.id, sheet=sheet),
                    )
                apply_record_values(record, values)
                record.sheet = sheet
                db.commit()
                written_ids.add(record.id)
                result.updated_count += 1
            else:
                record = RepairOrder(sheet=sheet)
                apply_record_values(record, values)
                db.add(record)
                db.commit()
                id_by_ro[ro_number] = record.id
                written_ids.add(record.id)
                result.inserted_count += 1
        except SQLAlchemyError as e:
            db.rollback()
            result.errors.append(f"Row {row_index} (RO {ro_number}): {type(e).__name__}: {e}")

    result.error_count = len(result.errors)
    logger.info(
        "Pull complete sheet=%s total=%s inserted=%s updated=%s skipped=%s errors=%s overwritten=%s",
        sheet,
        result.total_rows,
        result.inserted_count,
        result.updated_count,
        result.skipped_count,
        result.error_count,
        result.overwritten_count,
    )
    return result


# =============================================================================
# Move
# =============================================================================


async def move_repair_order(
    db: Session,
    session: WorkbookSession,
    repair_order_id: int,
    from_sheet: str,
    to_sheet: str,
) -> MoveResult:
    """
    Relocate a record's row from one sheet to another.

    Order matters: the destination write must succeed before the source
    row is deleted. A missing source row is tolerated. A failed delete
    leaves a duplicate in the source sheet and still counts as success.
    Re-running a move overwrites the destination row instead of appending
    a second copy.
    """
    record = db.get(RepairOrder, repair_order_id)
    if record is None or record.ro_number is None:
        return MoveResult(
            success=False,
            ro_number=None,
            from_sheet=from_sheet,
            to_sheet=to_sheet,
            error="Repair order not found or has no RO number",
        )

    ro_number = record.ro_number
    result = MoveResult(success=False, ro_number=ro_number, from_sheet=from_sheet, to_sheet=to_sheet)
    log_extra = build_log_context(repair_order_id=record.id, sheet=to_sheet)

    # (a) locate source row
    source_rows = await excel_search_service.find_rows_by_ro(session, from_sheet, [ro_number])
    result.source_row = source_rows.get(ro_number)
    if result.source_row is None:
        logger.info("RO %s not found on %s; continuing move", ro_number, from_sheet, extra=log_extra)

    # (b) write destination row
    existing = await excel_search_service.find_rows_by_ro(session, to_sheet, [ro_number])
    destination_row = existing.get(ro_number)
    if destination_row is None:
        destination_row = await excel_search_service.get_next_available_row(session, to_sheet)
    result.destination_row = destination_row

    add_responses = await execute_batch(
        session,
        [
            build_row_update_request(
                1, session.workbook_path, to_sheet, destination_row, record_to_excel_row(record)
            )
        ],
    )
    add_analysis = analyze_batch_response(add_responses)
    raise_if_rate_limited(add_analysis)
    if add_analysis.failed_count or not add_analysis.success_count:
        result.error = "; ".join(add_analysis.error_messages) or "Destination write failed"
        logger.error("Move aborted for RO %s: %s", ro_number, result.error, extra=log_extra)
        return result

    # (c) guarded delete
    if result.source_row is not None:
        try:
            delete_responses = await execute_batch(
                session,
                [build_row_delete_request(1, session.workbook_path, from_sheet, result.source_row)],
            )
            delete_analysis = analyze_batch_response(delete_responses)
            result.source_deleted = delete_analysis.success_count == 1
            if not result.source_deleted:
                logger.warning(
                    "Move of RO %s left source row %s on %s: %s",
                    ro_number,
                    result.source_row,
                    from_sheet,
                    "; ".join(delete_analysis.error_messages),
                    extra=log_extra,
                )
        except (GraphAPIError, RateLimitedError) as e:
            logger.warning(
                "Move of RO %s could not delete source row: %s",
                ro_number,
                type(e).__name__,
                extra=log_extra,
            )

    record.sheet = to_sheet
    db.commit()
    result.success = True
    logger.info(
        "Moved RO %s from %s to %s row=%s",
        ro_number,
        from_sheet,
        to_sheet,
        destination_row,
        extra=log_extra,
    )
    return result
