"""HarvestBatch — a recorded abaca fiber harvest awaiting verification.

Owned by the harvest-recording side of the system; the allocation engine
only reads ``verification_status`` when a batch is admitted to stock.

Lifecycle:  pending → verified | rejected
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from abacatrack.database import Base, utcnow
from abacatrack.models.columns import enum_column
from abacatrack.quantity import Quantity, QuantityType


class VerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class HarvestBatch(Base):
    __tablename__ = "harvest_batches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    farmer_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Fiber details ────────────────────────────────────────
    resource_kind: Mapped[str] = mapped_column(String(100), nullable=False)  # abaca variety
    grade: Mapped[str | None] = mapped_column(String(20))
    quantity: Mapped[Quantity] = mapped_column(QuantityType, nullable=False)  # dry fiber, kg
    harvested_on: Mapped[date | None] = mapped_column(Date)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        enum_column(VerificationStatus, length=20),
        default=VerificationStatus.PENDING,
        index=True,
    )
    verified_by: Mapped[str | None] = mapped_column(String(36))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime)

    remarks: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
