"""Seedling allocation router.

Endpoints:
    POST   /api/allocations                          Grant seedlings to an association
    GET    /api/allocations                          Root grants with live-child totals
    PATCH  /api/allocations/{root_id}                Edit remarks
    POST   /api/allocations/{root_id}/cancel         Cancel (no children only)
    DELETE /api/allocations/{root_id}                Delete (no children only)
    POST   /api/allocations/{root_id}/children       Distribute to farmers (all or nothing)
    DELETE /api/allocations/children/{child_id}      Retract an undistributed grant
    POST   /api/allocations/children/{child_id}/planted   Record planting with evidence
    POST   /api/allocations/children/{child_id}/outcome   Record damaged / lost / replanted / other
"""

from fastapi import APIRouter, Depends, Query, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.auth.deps import Actor, Role, require_role
from abacatrack.routers.deps import get_allocation_engine, get_db, get_unit_lifecycle
from abacatrack.schemas.allocation import (
    ChildAllocationOut,
    DistributeRequest,
    DistributionOut,
    OutcomeRequest,
    PlantingRequest,
    RootAllocationCreate,
    RootAllocationOut,
    RootAllocationUpdate,
)
from abacatrack.schemas.common import PaginatedResponse
from abacatrack.schemas.report import RootAllocationRow
from abacatrack.services.allocation import AllocationEngine
from abacatrack.services.lifecycle import PlantingEvidence, UnitLifecycle
from abacatrack.services.reporting import root_allocation_overview
from abacatrack.utils.cache import invalidate_cache

router = APIRouter()

_any_role = require_role(*Role)


def _association_scope(actor: Actor) -> str | None:
    # Associations act only on roots granted to them; admins are unscoped
    return actor.id if actor.role == Role.ASSOCIATION_OFFICER else None


# ── Root allocations ─────────────────────────────────────────

@router.post("", response_model=RootAllocationOut, status_code=201)
async def create_root_allocation(
    body: RootAllocationCreate,
    engine: AllocationEngine = Depends(get_allocation_engine),
    actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    root = await engine.create_root_allocation(
        distributor_id=actor.id,
        recipient_id=body.recipient_id,
        resource_kind=body.resource_kind,
        quantity=body.quantity,
        source_supplier=body.source_supplier,
        remarks=body.remarks,
        proof_refs=body.proof_refs,
    )
    await invalidate_cache("reports:*")
    return root


@router.get("", response_model=PaginatedResponse[RootAllocationRow])
async def list_root_allocations(
    recipient_id: str | None = Query(None),
    distributor_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(_any_role),
):
    # Associations only see grants made to them
    if actor.role == Role.ASSOCIATION_OFFICER:
        recipient_id = actor.id
    return await root_allocation_overview(
        db,
        recipient_id=recipient_id,
        distributor_id=distributor_id,
        limit=limit,
        offset=offset,
    )


@router.patch("/{root_id}", response_model=RootAllocationOut)
async def update_root_allocation(
    root_id: str,
    body: RootAllocationUpdate,
    engine: AllocationEngine = Depends(get_allocation_engine),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    return await engine.update_root_remarks(root_id, body.remarks)


@router.post("/{root_id}/cancel", response_model=RootAllocationOut)
async def cancel_root_allocation(
    root_id: str,
    engine: AllocationEngine = Depends(get_allocation_engine),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    root = await engine.cancel_root_allocation(root_id)
    await invalidate_cache("reports:*")
    return root


@router.delete("/{root_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_root_allocation(
    root_id: str,
    engine: AllocationEngine = Depends(get_allocation_engine),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    await engine.delete_root_allocation(root_id)
    await invalidate_cache("reports:*")


# ── Child allocations ────────────────────────────────────────

@router.post("/{root_id}/children", response_model=DistributionOut, status_code=201)
async def distribute_to_farmers(
    root_id: str,
    body: DistributeRequest,
    engine: AllocationEngine = Depends(get_allocation_engine),
    actor: Actor = Depends(require_role(Role.ASSOCIATION_OFFICER)),
):
    result = await engine.distribute_to_recipients(
        root_id,
        [(grant.recipient_id, grant.quantity) for grant in body.grants],
        allocated_by=actor.id,
        remarks=body.remarks,
        actor_id=_association_scope(actor),
    )
    await invalidate_cache("reports:*")
    return DistributionOut(
        parent=RootAllocationOut.model_validate(result.parent),
        children=[ChildAllocationOut.model_validate(c) for c in result.children],
        allocated=result.allocated,
        remaining=result.remaining,
    )


@router.delete("/children/{child_id}", response_model=RootAllocationOut)
async def delete_child_allocation(
    child_id: str,
    engine: AllocationEngine = Depends(get_allocation_engine),
    actor: Actor = Depends(require_role(Role.ASSOCIATION_OFFICER)),
):
    """Retract a farmer grant; returns the parent with its recomputed status."""
    root = await engine.delete_child_allocation(child_id, actor_id=_association_scope(actor))
    await invalidate_cache("reports:*")
    return root


@router.post("/children/{child_id}/planted", response_model=ChildAllocationOut)
async def mark_planted(
    child_id: str,
    body: PlantingRequest,
    lifecycle: UnitLifecycle = Depends(get_unit_lifecycle),
    actor: Actor = Depends(require_role(Role.FARMER)),
):
    evidence = PlantingEvidence(
        planted_on=body.planted_on,
        location=body.location,
        proof_refs=body.proof_refs,
        notes=body.notes,
    )
    # Admins may record on a farmer's behalf; farmers only for their own grants
    actor_id = actor.id if actor.role == Role.FARMER else None
    child = await lifecycle.mark_child_planted(child_id, evidence, actor_id=actor_id)
    await invalidate_cache("reports:*")
    return child


@router.post("/children/{child_id}/outcome", response_model=ChildAllocationOut)
async def record_outcome(
    child_id: str,
    body: OutcomeRequest,
    lifecycle: UnitLifecycle = Depends(get_unit_lifecycle),
    actor: Actor = Depends(require_role(Role.FARMER, Role.ASSOCIATION_OFFICER)),
):
    child = await lifecycle.record_child_outcome(
        child_id,
        body.state,
        notes=body.notes,
        farmer_id=actor.id if actor.role == Role.FARMER else None,
        association_id=_association_scope(actor),
    )
    await invalidate_cache("reports:*")
    return child
