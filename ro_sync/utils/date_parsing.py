"""Date parsing helpers for workbook cells.

Every accepted form is normalized to an ISO ``YYYY-MM-DD`` string before it
is written to the store.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta

from ro_sync.core.constants import EXCEL_SERIAL_EPOCH, TWO_DIGIT_YEAR_PIVOT

# Four-digit-year formats. Two-digit years go through expand_two_digit_year
# because strptime's %y pivot (69) differs from ours.
DATE_FORMATS: list[str] = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
]

_US_TWO_DIGIT_YEAR = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{2})")
_ISO_PREFIX = re.compile(r"(\d{4}-\d{2}-\d{2})[T ].*")
_SERIAL = re.compile(r"\d+(\.\d+)?")

# Serial range the workbook can represent (1900-01-01 .. 9999-12-31).
_MAX_SERIAL = 2958465


def expand_two_digit_year(year: int) -> int:
    if year < TWO_DIGIT_YEAR_PIVOT:
        return 2000 + year
    return 1900 + year


def from_excel_serial(serial: float) -> date | None:
    if not math.isfinite(serial) or serial < 1 or serial > _MAX_SERIAL:
        return None
    return EXCEL_SERIAL_EPOCH + timedelta(days=int(serial))


def to_excel_serial(value: date) -> int:
    return (value - EXCEL_SERIAL_EPOCH).days


def parse_date(value: object) -> date | None:
    """Parse a workbook cell into a date, or None when it is not a date."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return from_excel_serial(float(value))

    raw = str(value).strip()
    if not raw:
        return None

    iso_match = _ISO_PREFIX.fullmatch(raw)
    if iso_match:
        raw = iso_match.group(1)

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue

    short = _US_TWO_DIGIT_YEAR.fullmatch(raw)
    if short:
        month, day, year = (int(part) for part in short.groups())
        try:
            return date(expand_two_digit_year(year), month, day)
        except ValueError:
            return None

    if _SERIAL.fullmatch(raw):
        return from_excel_serial(float(raw))

    return None


def normalize_date(value: object) -> str | None:
    """Return the ISO form of a workbook date cell, or None."""
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else None
