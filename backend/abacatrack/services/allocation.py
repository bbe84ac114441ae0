"""Allocation engine — create, cancel and delete grants and withdrawals.

Two topologies, two consistency strategies:

  Root → children (seedlings, small fan-out)
      Aggregate-on-read.  The root row is locked (SELECT ... FOR UPDATE),
      live children are summed, the request is validated, children are
      inserted and the root's derived status is written, all in one
      transaction.  Concurrent distributions against one root queue on the
      row lock.

  Stock → withdrawals (fiber, high frequency)
      Atomic counter.  ``remaining_quantity`` is decremented by a single
      conditional UPDATE whose affected-row count decides success.

Every public method runs in its own transaction bounded by a timeout (the
instance default, or the ``timeout=`` argument).  Validation failures are
raised before anything is written; a timeout or storage error rolls the
whole call back and surfaces as StorageUnavailable.  The engine never
retries: callers own retry policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.ext.asyncio import async_sessionmaker

from abacatrack.config import settings
from abacatrack.database import async_session, atomic, utcnow
from abacatrack.errors import (
    ExceedsAllocation,
    HasDependents,
    InvalidTransition,
    MissingEvidence,
    NotVerified,
    PermissionDenied,
)
from abacatrack.models.allocation import (
    ChildAllocation,
    LifecycleState,
    RootAllocation,
    RootStatus,
)
from abacatrack.models.harvest import HarvestBatch, VerificationStatus
from abacatrack.models.stock import StockRecord, StockStatus, Withdrawal
from abacatrack.quantity import Quantity, total
from abacatrack.services import store
from abacatrack.services.conservation import (
    remaining_capacity,
    validate_children_batch,
    validate_withdrawal,
)
from abacatrack.services.status import derive_root_status, derive_stock_status

logger = logging.getLogger(__name__)


# ── Result payloads ────────────────────────────────────────────


@dataclass
class ChildGrantResult:
    """Children created in one call plus the parent's state after it."""
    parent: RootAllocation
    children: list[ChildAllocation] = field(default_factory=list)
    allocated: Quantity = field(default_factory=Quantity.zero)
    remaining: Quantity = field(default_factory=Quantity.zero)

    @property
    def child(self) -> ChildAllocation:
        return self.children[0]

    @property
    def parent_status(self) -> RootStatus:
        return self.parent.status


@dataclass
class WithdrawalResult:
    withdrawal: Withdrawal
    stock: StockRecord

    @property
    def remaining(self) -> Quantity:
        return self.stock.remaining_quantity

    @property
    def stock_status(self) -> StockStatus:
        return self.stock.status


def _check_root_owner(root: RootAllocation, actor_id: str | None) -> None:
    if actor_id is not None and actor_id != root.recipient_id:
        logger.warning(
            f"Root {root.id} belongs to {root.recipient_id}; refused for {actor_id}",
            extra={"root_id": root.id, "actor_id": actor_id},
        )
        raise PermissionDenied("Root allocation was granted to another association")


def _positive(qty) -> Quantity:
    qty = Quantity(qty)
    if qty.is_zero():
        raise ValueError("Quantity must be greater than zero")
    return qty


class AllocationEngine:
    """Orchestrates validator → store → status deriver for both topologies."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.storage_timeout_seconds

    def _tx(self, timeout: float | None):
        return atomic(self._session_factory, timeout if timeout is not None else self.timeout)

    # ── Harvest state (written by the harvest-recording collaborator) ──

    async def record_harvest(
        self,
        farmer_id: str,
        resource_kind: str,
        quantity,
        grade: str | None = None,
        harvested_on: date | None = None,
        *,
        timeout: float | None = None,
    ) -> HarvestBatch:
        async with self._tx(timeout) as db:
            return await store.record_harvest(
                db,
                farmer_id=farmer_id,
                resource_kind=resource_kind,
                quantity=_positive(quantity),
                grade=grade,
                harvested_on=harvested_on,
            )

    async def set_harvest_verification(
        self,
        harvest_id: str,
        status: VerificationStatus,
        verified_by: str | None = None,
        *,
        timeout: float | None = None,
    ) -> HarvestBatch:
        async with self._tx(timeout) as db:
            return await store.set_harvest_verification(db, harvest_id, status, verified_by)

    # ── Root allocations ───────────────────────────────────────

    async def create_root_allocation(
        self,
        distributor_id: str,
        recipient_id: str,
        resource_kind: str,
        quantity,
        source_supplier: str | None = None,
        remarks: str | None = None,
        proof_refs: list[str] | tuple[str, ...] = (),
        *,
        timeout: float | None = None,
    ) -> RootAllocation:
        quantity = _positive(quantity)
        async with self._tx(timeout) as db:
            root = RootAllocation(
                resource_kind=resource_kind,
                quantity=quantity,
                distributor_id=distributor_id,
                recipient_id=recipient_id,
                source_supplier=source_supplier,
                remarks=remarks,
                proof_refs=list(proof_refs),
                status=derive_root_status(quantity, Quantity.zero()),
            )
            await store.insert_root(db, root)

        logger.info(
            f"Root allocation {root.id}: {quantity} {resource_kind} "
            f"{distributor_id} → {recipient_id}"
        )
        return root

    async def update_root_remarks(
        self,
        root_id: str,
        remarks: str | None,
        *,
        timeout: float | None = None,
    ) -> RootAllocation:
        """Remarks are the only caller-patchable field on a root."""
        async with self._tx(timeout) as db:
            root = await store.lock_root(db, root_id)
            root.remarks = remarks
            await db.flush()
        return root

    async def cancel_root_allocation(
        self,
        root_id: str,
        *,
        timeout: float | None = None,
    ) -> RootAllocation:
        async with self._tx(timeout) as db:
            root = await store.lock_root(db, root_id)
            if root.cancelled_at is not None:
                raise InvalidTransition(root.id, root.status, RootStatus.CANCELLED)
            dependents = await store.count_children(db, root.id)
            if dependents:
                logger.warning(f"Cancel of root {root.id} blocked by {dependents} children")
                raise HasDependents("root allocation", root.id, dependents)
            root.cancelled_at = utcnow()
            root.status = derive_root_status(root.quantity, Quantity.zero(), cancelled=True)
            await db.flush()

        logger.info(f"Root allocation {root.id} cancelled")
        return root

    async def delete_root_allocation(
        self,
        root_id: str,
        *,
        timeout: float | None = None,
    ) -> None:
        async with self._tx(timeout) as db:
            root = await store.lock_root(db, root_id)
            dependents = await store.count_children(db, root.id)
            if dependents:
                logger.warning(f"Delete of root {root.id} blocked by {dependents} children")
                raise HasDependents("root allocation", root.id, dependents)
            await store.delete_root(db, root)

        logger.info(f"Root allocation {root_id} deleted")

    # ── Child allocations ──────────────────────────────────────

    async def create_child_allocation(
        self,
        parent_id: str,
        recipient_id: str,
        qty,
        allocated_by: str | None = None,
        remarks: str | None = None,
        actor_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ChildGrantResult:
        return await self.distribute_to_recipients(
            parent_id,
            [(recipient_id, qty)],
            allocated_by=allocated_by,
            remarks=remarks,
            actor_id=actor_id,
            timeout=timeout,
        )

    async def distribute_to_recipients(
        self,
        parent_id: str,
        grants: list[tuple[str, object]],
        allocated_by: str | None = None,
        remarks: str | None = None,
        actor_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ChildGrantResult:
        """Carve one or more child grants out of a root, all or nothing.

        Raises ExceedsAllocation (with the remaining capacity) when the
        requested total does not fit in what is left on the root.
        With ``actor_id`` set, only the association the root was granted to
        may distribute from it.
        """
        grants = [(recipient_id, _positive(qty)) for recipient_id, qty in grants]

        async with self._tx(timeout) as db:
            root = await store.lock_root(db, parent_id)
            _check_root_owner(root, actor_id)
            if root.cancelled_at is not None:
                raise InvalidTransition(
                    root.id, root.status, LifecycleState.DISTRIBUTED,
                    reason="root allocation is cancelled",
                )

            existing = await store.children_sum(db, root.id)
            try:
                validate_children_batch(root, existing, [qty for _, qty in grants])
            except ExceedsAllocation:
                logger.warning(
                    f"Distribution against root {root.id} rejected: "
                    f"requested {total(q for _, q in grants)}, "
                    f"remaining {remaining_capacity(root.quantity, existing)}",
                    extra={"root_id": root.id, "error_code": ExceedsAllocation.error_code},
                )
                raise

            children = [
                ChildAllocation(
                    parent_id=root.id,
                    quantity=qty,
                    recipient_id=recipient_id,
                    allocated_by=allocated_by,
                    remarks=remarks,
                    lifecycle_state=LifecycleState.DISTRIBUTED,
                )
                for recipient_id, qty in grants
            ]
            await store.insert_children(db, children)

            allocated = await store.children_sum(db, root.id)
            root.status = derive_root_status(root.quantity, allocated)
            await db.flush()

        result = ChildGrantResult(
            parent=root,
            children=children,
            allocated=allocated,
            remaining=remaining_capacity(root.quantity, allocated),
        )
        logger.info(
            f"Root {root.id}: {len(children)} child grant(s) created, "
            f"{result.remaining} remaining, status={root.status.value}"
        )
        return result

    async def delete_child_allocation(
        self,
        child_id: str,
        actor_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> RootAllocation:
        """Retract a child grant that has not progressed past distributed."""
        async with self._tx(timeout) as db:
            child = await store.get_child(db, child_id)
            # Parent first, then child: same lock order as distribution
            root = await store.lock_root(db, child.parent_id)
            _check_root_owner(root, actor_id)
            child = await store.get_child(db, child_id, for_update=True)
            if child.lifecycle_state != LifecycleState.DISTRIBUTED:
                raise InvalidTransition(
                    child.id, child.lifecycle_state, "deleted",
                    reason="only undistributed grants can be retracted",
                )
            await store.delete_child(db, child)

            allocated = await store.children_sum(db, root.id)
            root.status = derive_root_status(
                root.quantity, allocated, cancelled=root.cancelled_at is not None
            )
            await db.flush()

        logger.info(f"Child allocation {child_id} retracted; root {root.id} now {root.status.value}")
        return root

    # ── Stock records ──────────────────────────────────────────

    async def admit_batch_to_stock(
        self,
        source_batch_id: str,
        qty=None,
        admitted_by: str | None = None,
        storage_location: str | None = None,
        remarks: str | None = None,
        *,
        timeout: float | None = None,
    ) -> StockRecord:
        """Create the stock record for a verified harvest batch.

        A second admission of the same batch is rejected by the unique
        constraint on ``source_batch_id`` (AlreadyAdmitted), not by a prior
        existence check, so two concurrent admissions cannot both succeed.
        """
        async with self._tx(timeout) as db:
            harvest = await store.get_harvest(db, source_batch_id)
            if harvest.verification_status != VerificationStatus.VERIFIED:
                logger.warning(
                    f"Admission of batch {source_batch_id} rejected: "
                    f"{harvest.verification_status.value}",
                    extra={"source_batch_id": source_batch_id, "error_code": NotVerified.error_code},
                )
                raise NotVerified(source_batch_id, harvest.verification_status)

            quantity = _positive(qty if qty is not None else harvest.quantity)
            record = StockRecord(
                source_batch_id=harvest.id,
                resource_kind=harvest.resource_kind,
                grade=harvest.grade,
                initial_quantity=quantity,
                remaining_quantity=quantity,
                status=derive_stock_status(quantity, quantity),
                admitted_by=admitted_by,
                storage_location=storage_location,
                remarks=remarks,
            )
            await store.insert_stock_record(db, record)

        logger.info(f"Batch {source_batch_id} admitted to stock {record.id}: {quantity}")
        return record

    async def create_withdrawal(
        self,
        stock_id: str,
        recipient: str,
        qty,
        recipient_type: str | None = None,
        distributed_by: str | None = None,
        destination: str | None = None,
        remarks: str | None = None,
        *,
        timeout: float | None = None,
    ) -> WithdrawalResult:
        qty = _positive(qty)

        async with self._tx(timeout) as db:
            # Fast rejection on an unlocked read; the conditional UPDATE
            # below is what actually guards the balance.
            stock = await store.get_stock(db, stock_id)
            if stock.written_off_at is not None:
                raise InvalidTransition(stock.id, stock.status, "withdrawal")
            validate_withdrawal(stock, qty)

            if not await store.decrement_stock(db, stock_id, qty):
                stock = await store.get_stock(db, stock_id)
                logger.warning(
                    f"Withdrawal of {qty} from stock {stock_id} lost the race: "
                    f"{stock.remaining_quantity} remaining",
                    extra={"stock_id": stock_id, "requested": str(qty)},
                )
                if stock.written_off_at is not None:
                    raise InvalidTransition(stock.id, stock.status, "withdrawal")
                validate_withdrawal(stock, qty)
                # Balance covered qty on re-read yet the update matched nothing
                raise InvalidTransition(stock.id, stock.status, "withdrawal",
                                        reason="stock record changed concurrently")

            withdrawal = Withdrawal(
                stock_record_id=stock_id,
                quantity=qty,
                recipient=recipient,
                recipient_type=recipient_type,
                distributed_by=distributed_by,
                destination=destination,
                remarks=remarks,
            )
            await store.insert_withdrawal(db, withdrawal)

            stock = await store.get_stock(db, stock_id)
            stock.status = derive_stock_status(stock.initial_quantity, stock.remaining_quantity)
            await db.flush()

        logger.info(
            f"Withdrawal {withdrawal.id}: {qty} from stock {stock_id} to {recipient}, "
            f"{stock.remaining_quantity} remaining"
        )
        return WithdrawalResult(withdrawal=withdrawal, stock=stock)

    async def write_off_stock(
        self,
        stock_id: str,
        reason: str | None,
        *,
        timeout: float | None = None,
    ) -> StockRecord:
        """Mark stock damaged; the balance is frozen and no further withdrawals match."""
        if not reason or not reason.strip():
            raise MissingEvidence(["reason"])

        async with self._tx(timeout) as db:
            stock = await store.get_stock(db, stock_id, for_update=True)
            if stock.written_off_at is not None:
                raise InvalidTransition(stock.id, stock.status, StockStatus.DAMAGED)
            stock.written_off_at = utcnow()
            stock.write_off_reason = reason.strip()
            stock.status = derive_stock_status(
                stock.initial_quantity, stock.remaining_quantity, written_off=True
            )
            await db.flush()

        logger.info(f"Stock {stock_id} written off: {reason}")
        return stock

    async def delete_stock_record(
        self,
        stock_id: str,
        *,
        timeout: float | None = None,
    ) -> None:
        async with self._tx(timeout) as db:
            stock = await store.get_stock(db, stock_id, for_update=True)
            dependents = await store.count_withdrawals(db, stock.id)
            if dependents:
                logger.warning(f"Delete of stock {stock.id} blocked by {dependents} withdrawals")
                raise HasDependents("stock record", stock.id, dependents)
            await store.delete_stock(db, stock)

        logger.info(f"Stock record {stock_id} deleted")
