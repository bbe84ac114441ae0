"""Seedling allocation — root grants and the child grants carved out of them.

RootAllocation is a grant of planting stock from a program officer to one
farmer association.  The association sub-divides it into ChildAllocations,
one per farmer.  The sum of a root's children never exceeds the root's
quantity; the root's status is derived from that sum and never set directly.

Root lifecycle:   allocated → partially_resubdivided → fully_resubdivided
                  allocated → cancelled (explicit, only with no children)
Child lifecycle:  distributed → planted | damaged | replanted | lost | other
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint, Date, DateTime, ForeignKey, JSON, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from abacatrack.database import Base, utcnow
from abacatrack.models.columns import enum_column
from abacatrack.quantity import Quantity, QuantityType


class RootStatus(str, enum.Enum):
    ALLOCATED = "allocated"
    PARTIALLY_RESUBDIVIDED = "partially_resubdivided"
    FULLY_RESUBDIVIDED = "fully_resubdivided"
    CANCELLED = "cancelled"


class LifecycleState(str, enum.Enum):
    DISTRIBUTED = "distributed"
    PLANTED = "planted"
    DAMAGED = "damaged"
    REPLANTED = "replanted"
    LOST = "lost"
    OTHER = "other"


class RootAllocation(Base):
    __tablename__ = "root_allocations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_root_allocations_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    resource_kind: Mapped[str] = mapped_column(String(100), nullable=False)  # seedling variety
    source_supplier: Mapped[str | None] = mapped_column(String(255))

    # Fixed at creation
    quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)

    # ── Parties ──────────────────────────────────────────────
    distributor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    recipient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Derived status (written only via services.status) ────
    status: Mapped[RootStatus] = mapped_column(
        enum_column(RootStatus), default=RootStatus.ALLOCATED, index=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Opaque evidence URIs from the upload service (seedling / packaging / quality photos)
    proof_refs: Mapped[list] = mapped_column(JSON, default=list)
    remarks: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class ChildAllocation(Base):
    __tablename__ = "child_allocations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_child_allocations_quantity_positive"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    parent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("root_allocations.id"), nullable=False, index=True
    )

    quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    allocated_by: Mapped[str | None] = mapped_column(String(36))  # association officer

    lifecycle_state: Mapped[LifecycleState] = mapped_column(
        enum_column(LifecycleState, length=20),
        default=LifecycleState.DISTRIBUTED,
        index=True,
    )

    # ── Planting evidence ────────────────────────────────────
    planted_on: Mapped[date | None] = mapped_column(Date)
    planting_location: Mapped[str | None] = mapped_column(String(255))
    planting_proof_refs: Mapped[list | None] = mapped_column(JSON)
    planting_notes: Mapped[str | None] = mapped_column(Text)
    planted_by: Mapped[str | None] = mapped_column(String(36))
    planted_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Notes for damaged / lost / replanted / other outcomes
    outcome_notes: Mapped[str | None] = mapped_column(Text)
    outcome_at: Mapped[datetime | None] = mapped_column(DateTime)

    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
