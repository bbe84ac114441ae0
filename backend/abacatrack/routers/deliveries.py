"""Fiber delivery router.

Endpoints:
    POST /api/deliveries                        Dispatch a withdrawal to a buyer
    GET  /api/deliveries/{delivery_id}          Single delivery
    POST /api/deliveries/{delivery_id}/advance  Move along the delivery pipeline
    POST /api/deliveries/{delivery_id}/paid     Record payment (delivered / completed only)
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.auth.deps import Actor, Role, require_role
from abacatrack.errors import PermissionDenied
from abacatrack.routers.deps import get_db, get_unit_lifecycle
from abacatrack.schemas.delivery import (
    DeliveryAdvance,
    DeliveryCreate,
    DeliveryOut,
    DeliveryPaid,
)
from abacatrack.services import store
from abacatrack.services.lifecycle import UnitLifecycle
from abacatrack.utils.cache import invalidate_cache

router = APIRouter()


@router.post("", response_model=DeliveryOut, status_code=201)
async def create_delivery(
    body: DeliveryCreate,
    lifecycle: UnitLifecycle = Depends(get_unit_lifecycle),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    delivery = await lifecycle.create_delivery(body.withdrawal_id, body.buyer_id)
    await invalidate_cache("reports:*")
    return delivery


@router.get("/{delivery_id}", response_model=DeliveryOut)
async def get_delivery(
    delivery_id: str,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER, Role.BUYER)),
):
    delivery = await store.get_delivery(db, delivery_id)
    if actor.role == Role.BUYER and delivery.buyer_id != actor.id:
        raise PermissionDenied("Delivery belongs to another buyer")
    return delivery


@router.post("/{delivery_id}/advance", response_model=DeliveryOut)
async def advance_delivery(
    delivery_id: str,
    body: DeliveryAdvance,
    lifecycle: UnitLifecycle = Depends(get_unit_lifecycle),
    actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER, Role.BUYER)),
):
    # Buyers may only confirm / receive their own deliveries
    buyer_id = actor.id if actor.role == Role.BUYER else None
    delivery = await lifecycle.advance_delivery(
        delivery_id, body.target_state, reason=body.reason, buyer_id=buyer_id
    )
    await invalidate_cache("reports:*")
    return delivery


@router.post("/{delivery_id}/paid", response_model=DeliveryOut)
async def mark_paid(
    delivery_id: str,
    body: DeliveryPaid,
    lifecycle: UnitLifecycle = Depends(get_unit_lifecycle),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    delivery = await lifecycle.mark_delivery_paid(delivery_id, payment_method=body.payment_method)
    await invalidate_cache("reports:*")
    return delivery
