"""SQLAlchemy ORM models."""

from ro_sync.db.models.integrations import UserIntegration
from ro_sync.db.models.jobs import Job
from ro_sync.db.models.notifications import NotificationQueueItem
from ro_sync.db.models.repair_orders import RepairOrder, Shop

__all__ = [
    "Job",
    "NotificationQueueItem",
    "RepairOrder",
    "Shop",
    "UserIntegration",
]
