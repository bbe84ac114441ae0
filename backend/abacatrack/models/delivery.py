"""UnitDeliveryRecord — the shipment of one withdrawal to a buyer.

State moves forward only:  in_transit → confirmed → delivered → completed,
or to cancelled from any non-terminal state.  Payment is a separate axis
(unpaid → paid) that opens once the fiber has been delivered.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from abacatrack.database import Base, utcnow
from abacatrack.models.columns import enum_column


class DeliveryState(str, enum.Enum):
    IN_TRANSIT = "in_transit"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentState(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class UnitDeliveryRecord(Base):
    __tablename__ = "unit_deliveries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # One delivery per withdrawal
    source_withdrawal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("withdrawals.id"), unique=True, nullable=False
    )
    buyer_id: Mapped[str | None] = mapped_column(String(36), index=True)

    state: Mapped[DeliveryState] = mapped_column(
        enum_column(DeliveryState, length=20),
        default=DeliveryState.IN_TRANSIT,
        index=True,
    )
    payment_state: Mapped[PaymentState] = mapped_column(
        enum_column(PaymentState, length=10), default=PaymentState.UNPAID
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    payment_method: Mapped[str | None] = mapped_column(String(50))

    # ── Transition timestamps ────────────────────────────────
    dispatched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
