"""Pydantic schemas for fiber stock records and withdrawals."""

from datetime import datetime

from pydantic import BaseModel, Field

from abacatrack.models.stock import StockStatus
from abacatrack.schemas.common import QuantityIn, QuantityOut


class StockAdmit(BaseModel):
    source_batch_id: str
    # Defaults to the harvest's recorded dry-fiber quantity
    quantity: QuantityIn | None = None
    storage_location: str | None = None
    remarks: str | None = None


class StockRecordOut(BaseModel):
    id: str
    source_batch_id: str
    resource_kind: str
    grade: str | None
    initial_quantity: QuantityOut
    remaining_quantity: QuantityOut
    status: StockStatus
    written_off_at: datetime | None
    write_off_reason: str | None
    admitted_by: str | None
    storage_location: str | None
    remarks: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalCreate(BaseModel):
    recipient: str = Field(..., min_length=1, max_length=255)
    quantity: QuantityIn
    recipient_type: str | None = None  # buyer | processor | association | other
    destination: str | None = None
    remarks: str | None = None


class WithdrawalOut(BaseModel):
    id: str
    stock_record_id: str
    quantity: QuantityOut
    recipient: str
    recipient_type: str | None
    distributed_by: str | None
    destination: str | None
    remarks: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalResultOut(BaseModel):
    withdrawal: WithdrawalOut
    stock: StockRecordOut


class WriteOffRequest(BaseModel):
    reason: str | None = None
