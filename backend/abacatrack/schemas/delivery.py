"""Pydantic schemas for unit delivery records."""

from datetime import datetime

from pydantic import BaseModel

from abacatrack.models.delivery import DeliveryState, PaymentState


class DeliveryCreate(BaseModel):
    withdrawal_id: str
    buyer_id: str | None = None


class DeliveryAdvance(BaseModel):
    target_state: DeliveryState
    reason: str | None = None  # required when cancelling


class DeliveryPaid(BaseModel):
    payment_method: str | None = None


class DeliveryOut(BaseModel):
    id: str
    source_withdrawal_id: str
    buyer_id: str | None
    state: DeliveryState
    payment_state: PaymentState
    cancellation_reason: str | None
    payment_method: str | None
    dispatched_at: datetime
    confirmed_at: datetime | None
    delivered_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    paid_at: datetime | None

    model_config = {"from_attributes": True}
