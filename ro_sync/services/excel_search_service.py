"""Row lookups against a workbook sheet."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ro_sync.core.constants import FIRST_DATA_ROW, HEADER_ROW, RO_KEY_RANGE
from ro_sync.services.excel_batch_service import WorkbookSession, range_path
from ro_sync.services.excel_mapping import COLUMN_COUNT, parse_ro_number

logger = logging.getLogger(__name__)


async def find_rows_by_ro(
    session: WorkbookSession, sheet: str, ro_numbers: Iterable[int]
) -> dict[int, int]:
    """
    Map RO numbers to their 1-based row index on the sheet.

    Reads the whole key column once and resolves every requested key in
    memory. The first occurrence wins when a key appears on several rows.
    """
    wanted = set(ro_numbers)
    if not wanted:
        return {}

    payload = await session.get(
        range_path(session.workbook_path, sheet, RO_KEY_RANGE),
        params={"$select": "values"},
    )
    found: dict[int, int] = {}
    for offset, cells in enumerate(payload.get("values") or []):
        ro_number = parse_ro_number(cells[0] if cells else None)
        if ro_number in wanted and ro_number not in found:
            found[ro_number] = FIRST_DATA_ROW + offset
            if len(found) == len(wanted):
                break
    return found


async def get_next_available_row(session: WorkbookSession, sheet: str) -> int:
    """First free row after the used range. Row 2 for a header-only sheet."""
    payload = await session.get(
        f"{session.worksheet_path(sheet)}/usedRange(valuesOnly=true)",
        params={"$select": "rowCount"},
    )
    row_count = payload.get("rowCount") or HEADER_ROW
    return max(int(row_count), HEADER_ROW) + 1


async def read_all_rows(session: WorkbookSession, sheet: str) -> list[tuple[int, list[Any]]]:
    """Return (row_index, cells) for every non-empty data row."""
    payload = await session.get(
        f"{session.worksheet_path(sheet)}/usedRange(valuesOnly=true)",
        params={"$select": "values,rowCount"},
    )
    values = payload.get("values") or []
    rows: list[tuple[int, list[Any]]] = []
    for offset, cells in enumerate(values[HEADER_ROW:]):
        cells = list(cells[:COLUMN_COUNT])
        if all(cell is None or str(cell).strip() == "" for cell in cells):
            continue
        rows.append((FIRST_DATA_ROW + offset, cells))
    return rows
