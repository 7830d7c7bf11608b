"""Mapping between repair-order records and positional workbook rows.

The column list below is the workbook schema. Both directions use it, so
reordering it is a breaking change for every existing sheet.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Callable

from ro_sync.core.constants import STATUS_SYMBOLS
from ro_sync.db.models import RepairOrder
from ro_sync.utils.date_parsing import normalize_date


def parse_ro_number(value: object) -> int | None:
    """Parse the key cell. Only integral numbers are valid RO numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    raw = str(value).strip().replace(",", "")
    if not raw:
        return None
    try:
        number = float(raw)
    except ValueError:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    return int(number)


def parse_currency(value: object) -> float | None:
    """Parse "$1,250.00" style cells into a float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    raw = str(value).strip().replace("$", "").replace(",", "").strip()
    if not raw:
        return None
    try:
        number = float(raw)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_string(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        # Numeric cells such as serial numbers come back as 12345.0
        value = int(value)
    text = str(value).strip()
    return text or None


_STATUS_EDGE_SYMBOLS = re.compile(
    rf"^[{re.escape(STATUS_SYMBOLS)}\s]+|[{re.escape(STATUS_SYMBOLS)}\s]+$"
)


def clean_status(value: object) -> str | None:
    """Normalize a free-text status: "approved >>>" -> "Approved"."""
    text = parse_string(value)
    if text is None:
        return None
    text = _STATUS_EDGE_SYMBOLS.sub("", text).strip()
    if not text:
        return None
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split())


@dataclass(frozen=True)
class ExcelColumn:
    field: str
    header: str
    parse: Callable[[object], Any]


EXCEL_COLUMNS: list[ExcelColumn] = [
    ExcelColumn("ro_number", "RO", parse_ro_number),
    ExcelColumn("date_made", "DATE_MADE", normalize_date),
    ExcelColumn("shop_name", "SHOP_NAME", parse_string),
    ExcelColumn("part", "PART", parse_string),
    ExcelColumn("serial", "SERIAL", parse_string),
    ExcelColumn("part_description", "PART_DESCRIPTION", parse_string),
    ExcelColumn("req_work", "REQ_WORK", parse_string),
    ExcelColumn("date_dropped_off", "DATE_DROPPED_OFF", normalize_date),
    ExcelColumn("estimated_cost", "ESTIMATED_COST", parse_currency),
    ExcelColumn("final_cost", "FINAL_COST", parse_currency),
    ExcelColumn("terms", "TERMS", parse_string),
    ExcelColumn("shop_ref", "SHOP_REF", parse_string),
    ExcelColumn("estimated_delivery_date", "ESTIMATED_DELIVERY_DATE", normalize_date),
    ExcelColumn("current_status", "CURRENT_STATUS", clean_status),
    ExcelColumn("current_status_date", "CURRENT_STATUS_DATE", normalize_date),
    ExcelColumn("internal_status", "INTERNAL_STATUS", clean_status),
    ExcelColumn("shop_status", "SHOP_STATUS", clean_status),
    ExcelColumn("tracking_number", "TRACKING_NUMBER_PICKING_UP", parse_string),
    ExcelColumn("notes", "NOTES", parse_string),
    ExcelColumn("last_date_updated", "LAST_DATE_UPDATED", normalize_date),
    ExcelColumn("next_date_to_update", "NEXT_DATE_TO_UPDATE", normalize_date),
]

EXCEL_FIELDS: list[str] = [column.field for column in EXCEL_COLUMNS]
COLUMN_COUNT = len(EXCEL_COLUMNS)


def column_letter(index: int) -> str:
    """Zero-based column index to its letter (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative: {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


LAST_COLUMN = column_letter(COLUMN_COUNT - 1)


def row_address(row: int) -> str:
    return f"A{row}:{LAST_COLUMN}{row}"


def header_row() -> list[str]:
    return [column.header for column in EXCEL_COLUMNS]


def record_to_excel_row(record: RepairOrder) -> list[Any]:
    """Flatten a record into the positional row, empty string for nulls."""
    row: list[Any] = []
    for field in EXCEL_FIELDS:
        value = getattr(record, field, None)
        row.append("" if value is None else value)
    return row


def excel_row_to_record(row: list[Any]) -> dict[str, Any] | None:
    """
    Convert a positional row into record field values.

    Returns None when the RO cell is not a valid number; callers count such
    rows as skipped. Missing trailing cells read as empty.
    """
    cells = list(row[:COLUMN_COUNT]) + [None] * (COLUMN_COUNT - len(row))
    ro_number = parse_ro_number(cells[0])
    if ro_number is None:
        return None

    values: dict[str, Any] = {"ro_number": ro_number}
    for column, cell in zip(EXCEL_COLUMNS[1:], cells[1:]):
        values[column.field] = column.parse(cell)
    return values


def apply_record_values(record: RepairOrder, values: dict[str, Any]) -> None:
    for field, value in values.items():
        setattr(record, field, value)
