"""Shared constants for workbook replication and status handling."""

from datetime import date

# Workbook batch API
MAX_BATCH_SIZE = 20
HEADER_ROW = 1
FIRST_DATA_ROW = 2
# Key column read window used by the row locator (one read per lookup).
RO_KEY_RANGE = "A2:A10000"

# Inbound data quirks. Both are fixed policies, not settings.
# Two-digit years below the pivot are 20YY, the rest 19YY.
TWO_DIGIT_YEAR_PIVOT = 50
# Characters stripped from either end of a free-text status ("APPROVED >>>").
STATUS_SYMBOLS = "><=-*#@!~^&|"
# Day zero for spreadsheet serial dates (accounts for the 1900 leap-year bug).
EXCEL_SERIAL_EPOCH = date(1899, 12, 30)

# Statuses that live on archive sheets. Push never writes these to the
# active sheet, otherwise a moved record would reappear there.
ARCHIVED_STATUSES = frozenset(
    {
        "COMPLETE",
        "NET",
        "PAID",
        "RETURNS",
        "BER",
        "RAI",
        "CANCELLED",
    }
)

# Statuses with follow-up automation configured.
TRACKED_STATUSES = frozenset(
    {
        "WAITING QUOTE",
        "APPROVED",
        "IN WORK",
        "IN PROGRESS",
        "SHIPPED",
        "IN TRANSIT",
        "RECEIVED",
    }
)

# Archive destinations (status written to the record, sheet it moves to).
ARCHIVE_DESTINATIONS: dict[str, tuple[str, str]] = {
    "returns": ("RETURNS", "Returns"),
    "paid": ("PAID", "Paid"),
    "net": ("NET", "NET"),
}


def normalize_status_key(status: str | None) -> str:
    """Comparison key for statuses: trimmed and upper-cased."""
    return (status or "").strip().upper()


def is_archived_status(status: str | None) -> bool:
    return normalize_status_key(status) in ARCHIVED_STATUSES


def is_tracked_status(status: str | None) -> bool:
    return normalize_status_key(status) in TRACKED_STATUSES
