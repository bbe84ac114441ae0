"""Fiber stock — running-balance records and the withdrawals drawn from them.

A StockRecord is created once per verified HarvestBatch (``source_batch_id``
is unique).  ``remaining_quantity`` starts at ``initial_quantity`` and is
decremented by each Withdrawal through a single conditional UPDATE, never
by read-modify-write in Python.

Lifecycle:  stocked → partially_distributed → fully_distributed
            any → damaged (explicit write-off, blocks further withdrawals)
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from abacatrack.database import Base, utcnow
from abacatrack.models.columns import enum_column
from abacatrack.quantity import Quantity, QuantityType


class StockStatus(str, enum.Enum):
    STOCKED = "stocked"
    PARTIALLY_DISTRIBUTED = "partially_distributed"
    FULLY_DISTRIBUTED = "fully_distributed"
    DAMAGED = "damaged"


class StockRecord(Base):
    __tablename__ = "stock_records"
    __table_args__ = (
        CheckConstraint("initial_quantity > 0", name="ck_stock_records_initial_positive"),
        CheckConstraint("remaining_quantity >= 0", name="ck_stock_records_remaining_non_negative"),
        CheckConstraint(
            "remaining_quantity <= initial_quantity",
            name="ck_stock_records_remaining_within_initial",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # At most one stock record per harvest batch
    source_batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("harvest_batches.id"), unique=True, nullable=False
    )

    resource_kind: Mapped[str] = mapped_column(String(100), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20))

    # ── Balance ──────────────────────────────────────────────
    initial_quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)
    remaining_quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)

    # ── Derived status (written only via services.status) ────
    status: Mapped[StockStatus] = mapped_column(
        enum_column(StockStatus, length=30), default=StockStatus.STOCKED, index=True
    )
    written_off_at: Mapped[datetime | None] = mapped_column(DateTime)
    write_off_reason: Mapped[str | None] = mapped_column(Text)

    admitted_by: Mapped[str | None] = mapped_column(String(36))
    storage_location: Mapped[str | None] = mapped_column(String(255))
    remarks: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Withdrawal(Base):
    """One outgoing movement of fiber against a StockRecord."""
    __tablename__ = "withdrawals"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_withdrawals_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stock_record_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_records.id"), nullable=False, index=True
    )
    quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)

    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    # buyer | processor | association | other
    recipient_type: Mapped[str | None] = mapped_column(String(30))
    distributed_by: Mapped[str | None] = mapped_column(String(36))
    destination: Mapped[str | None] = mapped_column(String(255))
    remarks: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, index=True
    )
