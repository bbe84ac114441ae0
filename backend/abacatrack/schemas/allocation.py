"""Pydantic schemas for root and child seedling allocations."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from abacatrack.models.allocation import LifecycleState, RootStatus
from abacatrack.schemas.common import QuantityIn, QuantityOut


# ── Root allocations ─────────────────────────────────────────

class RootAllocationCreate(BaseModel):
    recipient_id: str  # association
    resource_kind: str = Field(..., min_length=1, max_length=100)
    quantity: QuantityIn
    source_supplier: str | None = None
    remarks: str | None = None
    proof_refs: list[str] = Field(default_factory=list)


class RootAllocationUpdate(BaseModel):
    """Remarks are the only editable field."""
    remarks: str | None = None


class RootAllocationOut(BaseModel):
    id: str
    resource_kind: str
    source_supplier: str | None
    quantity: QuantityOut
    distributor_id: str
    recipient_id: str
    status: RootStatus
    cancelled_at: datetime | None
    proof_refs: list[str] | None
    remarks: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ── Child allocations ────────────────────────────────────────

class ChildGrantIn(BaseModel):
    recipient_id: str  # farmer
    quantity: QuantityIn


class DistributeRequest(BaseModel):
    grants: list[ChildGrantIn] = Field(..., min_length=1)
    remarks: str | None = None


class ChildAllocationOut(BaseModel):
    id: str
    parent_id: str
    quantity: QuantityOut
    recipient_id: str
    allocated_by: str | None
    lifecycle_state: LifecycleState
    planted_on: date | None
    planting_location: str | None
    planting_proof_refs: list[str] | None
    planting_notes: str | None
    planted_at: datetime | None
    outcome_notes: str | None
    outcome_at: datetime | None
    remarks: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DistributionOut(BaseModel):
    parent: RootAllocationOut
    children: list[ChildAllocationOut]
    allocated: QuantityOut
    remaining: QuantityOut


class PlantingRequest(BaseModel):
    # Left optional so a missing field is reported as MISSING_EVIDENCE
    planted_on: date | None = None
    location: str | None = None
    proof_refs: list[str] = Field(default_factory=list, max_length=3)
    notes: str | None = None


class OutcomeRequest(BaseModel):
    state: LifecycleState
    notes: str | None = None
