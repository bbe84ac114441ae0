"""Allocation store — the persistence boundary for grants, stock and deliveries.

Every function takes the caller's AsyncSession and runs inside the caller's
transaction; none of them commits.  Lookups raise NotFound instead of
returning None.  The two atomic primitives live here:

  - lock_root()        SELECT ... FOR UPDATE on the root row, held until
                       commit, so read-aggregate-then-insert is serialized
                       per root
  - decrement_stock()  UPDATE ... SET remaining = remaining - :q
                       WHERE remaining >= :q  (affected-row count checked)

Admission and delivery creation lean on unique constraints; the resulting
IntegrityError is translated to the typed failure here.
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.database import utcnow
from abacatrack.errors import AlreadyAdmitted, DuplicateDelivery, NotFound
from abacatrack.models.allocation import ChildAllocation, RootAllocation
from abacatrack.models.delivery import UnitDeliveryRecord
from abacatrack.models.harvest import HarvestBatch, VerificationStatus
from abacatrack.models.stock import StockRecord, Withdrawal
from abacatrack.quantity import Quantity


async def _get(db: AsyncSession, model, record_id: str, resource: str, for_update: bool = False):
    stmt = select(model).where(model.id == record_id)
    if for_update:
        stmt = stmt.with_for_update()
    # Always refresh: another transaction may have committed since the
    # identity map last saw this row.
    stmt = stmt.execution_options(populate_existing=True)
    obj = (await db.execute(stmt)).scalar_one_or_none()
    if obj is None:
        raise NotFound(resource, record_id)
    return obj


# ── Harvest batches (external verification state) ───────────


async def get_harvest(db: AsyncSession, harvest_id: str) -> HarvestBatch:
    return await _get(db, HarvestBatch, harvest_id, "Harvest batch")


async def record_harvest(db: AsyncSession, **fields) -> HarvestBatch:
    harvest = HarvestBatch(**fields)
    db.add(harvest)
    await db.flush()
    return harvest


async def set_harvest_verification(
    db: AsyncSession,
    harvest_id: str,
    status: VerificationStatus,
    verified_by: str | None = None,
) -> HarvestBatch:
    harvest = await get_harvest(db, harvest_id)
    harvest.verification_status = status
    harvest.verified_by = verified_by
    harvest.verified_at = utcnow() if status == VerificationStatus.VERIFIED else None
    await db.flush()
    return harvest


# ── Root / child allocations ────────────────────────────────


async def get_root(db: AsyncSession, root_id: str) -> RootAllocation:
    return await _get(db, RootAllocation, root_id, "Root allocation")


async def lock_root(db: AsyncSession, root_id: str) -> RootAllocation:
    """Load a root and hold its row lock until the transaction ends."""
    return await _get(db, RootAllocation, root_id, "Root allocation", for_update=True)


async def insert_root(db: AsyncSession, root: RootAllocation) -> RootAllocation:
    db.add(root)
    await db.flush()
    return root


async def delete_root(db: AsyncSession, root: RootAllocation) -> None:
    await db.delete(root)
    await db.flush()


async def children_sum(db: AsyncSession, parent_id: str) -> Quantity:
    """Total quantity of live children (every existing child is live)."""
    result = await db.execute(
        select(func.coalesce(func.sum(ChildAllocation.quantity), 0)).where(
            ChildAllocation.parent_id == parent_id
        )
    )
    return Quantity(result.scalar_one())


async def count_children(db: AsyncSession, parent_id: str) -> int:
    result = await db.execute(
        select(func.count(ChildAllocation.id)).where(
            ChildAllocation.parent_id == parent_id
        )
    )
    return int(result.scalar_one() or 0)


async def get_child(db: AsyncSession, child_id: str, for_update: bool = False) -> ChildAllocation:
    return await _get(db, ChildAllocation, child_id, "Child allocation", for_update=for_update)


async def insert_children(db: AsyncSession, children: list[ChildAllocation]) -> list[ChildAllocation]:
    db.add_all(children)
    await db.flush()
    return children


async def delete_child(db: AsyncSession, child: ChildAllocation) -> None:
    await db.delete(child)
    await db.flush()


# ── Stock records / withdrawals ─────────────────────────────


async def get_stock(db: AsyncSession, stock_id: str, for_update: bool = False) -> StockRecord:
    return await _get(db, StockRecord, stock_id, "Stock record", for_update=for_update)


async def insert_stock_record(db: AsyncSession, record: StockRecord) -> StockRecord:
    """Insert; the unique constraint on source_batch_id rejects a second admission."""
    db.add(record)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise AlreadyAdmitted(record.source_batch_id) from exc
    return record


async def decrement_stock(db: AsyncSession, stock_id: str, qty: Quantity) -> bool:
    """Atomically take ``qty`` off the balance.  False when it would overdraw.

    A single conditional UPDATE: the balance test and the decrement cannot
    be separated by another writer.  Written-off stock never matches.
    """
    result = await db.execute(
        update(StockRecord)
        .where(
            StockRecord.id == stock_id,
            StockRecord.remaining_quantity >= qty,
            StockRecord.written_off_at.is_(None),
        )
        .values(
            remaining_quantity=StockRecord.remaining_quantity - qty,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def insert_withdrawal(db: AsyncSession, withdrawal: Withdrawal) -> Withdrawal:
    db.add(withdrawal)
    await db.flush()
    return withdrawal


async def get_withdrawal(db: AsyncSession, withdrawal_id: str) -> Withdrawal:
    return await _get(db, Withdrawal, withdrawal_id, "Withdrawal")


async def withdrawals_sum(db: AsyncSession, stock_id: str) -> Quantity:
    result = await db.execute(
        select(func.coalesce(func.sum(Withdrawal.quantity), 0)).where(
            Withdrawal.stock_record_id == stock_id
        )
    )
    return Quantity(result.scalar_one())


async def count_withdrawals(db: AsyncSession, stock_id: str) -> int:
    result = await db.execute(
        select(func.count(Withdrawal.id)).where(Withdrawal.stock_record_id == stock_id)
    )
    return int(result.scalar_one() or 0)


async def delete_stock(db: AsyncSession, stock: StockRecord) -> None:
    await db.delete(stock)
    await db.flush()


# ── Delivery records ────────────────────────────────────────


async def get_delivery(db: AsyncSession, delivery_id: str, for_update: bool = False) -> UnitDeliveryRecord:
    return await _get(db, UnitDeliveryRecord, delivery_id, "Delivery", for_update=for_update)


async def insert_delivery(db: AsyncSession, delivery: UnitDeliveryRecord) -> UnitDeliveryRecord:
    db.add(delivery)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicateDelivery(delivery.source_withdrawal_id) from exc
    return delivery
