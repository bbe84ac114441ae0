"""Fiber stock router.

Endpoints:
    POST   /api/stock                          Admit a verified harvest batch
    GET    /api/stock/{stock_id}               Single stock record
    POST   /api/stock/{stock_id}/withdrawals   Withdraw fiber (atomic decrement)
    POST   /api/stock/{stock_id}/write-off     Mark stock damaged
    DELETE /api/stock/{stock_id}               Delete (no withdrawals only)
"""

from fastapi import APIRouter, Depends, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.auth.deps import Actor, Role, require_role
from abacatrack.routers.deps import get_allocation_engine, get_db
from abacatrack.schemas.stock import (
    StockAdmit,
    StockRecordOut,
    WithdrawalCreate,
    WithdrawalResultOut,
    WriteOffRequest,
)
from abacatrack.services import store
from abacatrack.services.allocation import AllocationEngine
from abacatrack.utils.cache import invalidate_cache

router = APIRouter()


@router.post("", response_model=StockRecordOut, status_code=201)
async def admit_batch(
    body: StockAdmit,
    engine: AllocationEngine = Depends(get_allocation_engine),
    actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    record = await engine.admit_batch_to_stock(
        body.source_batch_id,
        qty=body.quantity,
        admitted_by=actor.id,
        storage_location=body.storage_location,
        remarks=body.remarks,
    )
    await invalidate_cache("reports:*")
    return record


@router.get("/{stock_id}", response_model=StockRecordOut)
async def get_stock_record(
    stock_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER, Role.BUYER)),
):
    return await store.get_stock(db, stock_id)


@router.post("/{stock_id}/withdrawals", response_model=WithdrawalResultOut, status_code=201)
async def create_withdrawal(
    stock_id: str,
    body: WithdrawalCreate,
    engine: AllocationEngine = Depends(get_allocation_engine),
    actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    result = await engine.create_withdrawal(
        stock_id,
        recipient=body.recipient,
        qty=body.quantity,
        recipient_type=body.recipient_type,
        distributed_by=actor.id,
        destination=body.destination,
        remarks=body.remarks,
    )
    await invalidate_cache("reports:*")
    return WithdrawalResultOut.model_validate(
        {"withdrawal": result.withdrawal, "stock": result.stock}, from_attributes=True
    )


@router.post("/{stock_id}/write-off", response_model=StockRecordOut)
async def write_off(
    stock_id: str,
    body: WriteOffRequest,
    engine: AllocationEngine = Depends(get_allocation_engine),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    record = await engine.write_off_stock(stock_id, body.reason)
    await invalidate_cache("reports:*")
    return record


@router.delete("/{stock_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_stock_record(
    stock_id: str,
    engine: AllocationEngine = Depends(get_allocation_engine),
    _actor: Actor = Depends(require_role(Role.PROGRAM_OFFICER)),
):
    await engine.delete_stock_record(stock_id)
    await invalidate_cache("reports:*")
