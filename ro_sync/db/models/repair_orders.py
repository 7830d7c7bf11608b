"""SQLAlchemy ORM models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Float, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from ro_sync.db.base import Base


class RepairOrder(Base):
    """
    One repair order in the store of record.

    ``ro_number`` is the join key against the workbook. It is nullable and not
    unique: a record can exist before it is ever pushed. Dates are stored as
    ISO ``YYYY-MM-DD`` strings, currency as floats.
    """

    __tablename__ = "repair_orders"
    __table_args__ = (
        Index("idx_repair_orders_ro_number", "ro_number"),
        Index("idx_repair_orders_status", "current_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ro_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Workbook sheet the record currently lives on; changed only by a move.
    sheet: Mapped[str] = mapped_column(
        String(50), default="Active", server_default=text("'Active'"), nullable=False
    )

    date_made: Mapped[str | None] = mapped_column(String(10), nullable=True)
    shop_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    part: Mapped[str | None] = mapped_column(String(255), nullable=True)
    serial: Mapped[str | None] = mapped_column(String(255), nullable=True)
    part_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    req_work: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_dropped_off: Mapped[str | None] = mapped_column(String(10), nullable=True)
    estimated_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    final_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    terms: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shop_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    estimated_delivery_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    current_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    current_status_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    internal_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shop_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_date_updated: Mapped[str | None] = mapped_column(String(10), nullable=True)
    next_date_to_update: Mapped[str | None] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Shop(Base):
    """Repair shop contact cache used to address follow-ups."""

    __tablename__ = "shops"
    __table_args__ = (Index("idx_shops_business_name", "business_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
