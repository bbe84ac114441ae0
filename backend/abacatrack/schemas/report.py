"""Pydantic schemas for dashboard reports and the conservation audit."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from abacatrack.models.allocation import RootStatus
from abacatrack.schemas.common import QuantityOut


class RootAllocationRow(BaseModel):
    """One root grant with its live children aggregated."""
    id: str
    resource_kind: str
    distributor_id: str
    recipient_id: str
    quantity: QuantityOut
    allocated: QuantityOut
    remaining: QuantityOut
    child_count: int
    status: RootStatus
    created_at: datetime


class DistributionTier(BaseModel):
    count: int
    count_since: int
    total_quantity: Decimal


class SeedlingStats(BaseModel):
    association_distributions: DistributionTier
    farmer_distributions: DistributionTier
    planted_quantity: Decimal
    quantity_by_state: dict[str, Decimal]
    planting_rate: str  # percent, two decimals


class StockStats(BaseModel):
    record_count: int
    total_initial: Decimal
    total_remaining: Decimal
    count_by_status: dict[str, int]
    remaining_by_kind: dict[str, Decimal]


class WithdrawalStats(BaseModel):
    count: int
    total_quantity: Decimal
    by_recipient_type: dict[str, Decimal]
    window_days: int
    count_in_window: int
    quantity_in_window: Decimal


class DeliveryStats(BaseModel):
    count: int
    count_by_state: dict[str, int]
    paid_quantity: Decimal
    unpaid_quantity: Decimal


class AuditFindingOut(BaseModel):
    kind: str
    record_id: str
    message: str


class AuditReport(BaseModel):
    ran_at: datetime
    total_findings: int
    by_kind: dict[str, int]
    findings: list[AuditFindingOut]
