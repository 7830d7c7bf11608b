"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ro_sync.db.base import Base
from ro_sync.db.enums import DEFAULT_NOTIFICATION_STATUS

if TYPE_CHECKING:
    from ro_sync.db.models import RepairOrder


class NotificationQueueItem(Base):
    """
    Outbound communication awaiting approval or delivery.

    Payload keys for EMAIL_DRAFT: to, cc, subject, body.
    Payload keys for TASK_REMINDER: title, notes, due_date.
    """

    __tablename__ = "notification_queue"
    __table_args__ = (
        Index("idx_notification_queue_status", "status", "scheduled_for"),
        # At most one item awaiting approval per repair order.
        Index(
            "uq_notification_pending_per_ro",
            "repair_order_id",
            unique=True,
            postgresql_where=text("status = 'PENDING_APPROVAL'"),
            sqlite_where=text("status = 'PENDING_APPROVAL'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    repair_order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("repair_orders.id", ondelete="CASCADE"), nullable=False
    )
    # Mailbox owner that sends on approval (external auth identity).
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        default=DEFAULT_NOTIFICATION_STATUS.value,
        server_default=text(f"'{DEFAULT_NOTIFICATION_STATUS.value}'"),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(nullable=False, default=dict)
    scheduled_for: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    outlook_message_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    outlook_conversation_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    repair_order: Mapped["RepairOrder"] = relationship()
