"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    PUSH_REPAIR_ORDERS = "push_repair_orders"  # store -> workbook upsert
    PULL_REPAIR_ORDERS = "pull_repair_orders"  # workbook -> store, workbook wins
    MOVE_RO_SHEET = "move_ro_sheet"  # relocate a row between sheets
    ARCHIVE_REPAIR_ORDER = "archive_repair_order"
    RO_LIFECYCLE_START = "ro_lifecycle_start"
    RO_LIFECYCLE_RECHECK = "ro_lifecycle_recheck"  # continuation after the wait
    CREATE_FOLLOW_UP_REMINDERS = "create_follow_up_reminders"
    SEND_APPROVED_NOTIFICATION = "send_approved_notification"
    UPDATE_SHOP_CONTACT = "update_shop_contact"
    OVERDUE_SWEEP = "overdue_sweep"  # Daily WAITING QUOTE check


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
