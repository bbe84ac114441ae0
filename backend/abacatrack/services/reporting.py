"""Reporting view — dashboard aggregates over allocations, stock and deliveries.

Plain unlocked reads: a report may lag an in-flight transaction by one
commit.  Nothing here writes, and nothing here is used by the engine to
decide anything.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.database import utcnow
from abacatrack.models.allocation import ChildAllocation, LifecycleState, RootAllocation, RootStatus
from abacatrack.models.delivery import UnitDeliveryRecord, PaymentState
from abacatrack.models.stock import StockRecord, Withdrawal
from abacatrack.quantity import Quantity
from abacatrack.schemas.common import PaginatedResponse
from abacatrack.schemas.report import (
    DeliveryStats,
    DistributionTier,
    RootAllocationRow,
    SeedlingStats,
    StockStats,
    WithdrawalStats,
)
from abacatrack.services.conservation import remaining_capacity


def _qty(value) -> Quantity:
    # SUM over no rows, or an outer join with no match, comes back as None
    return value if value is not None else Quantity.zero()


def _planting_rate(planted: Quantity, distributed: Quantity) -> str:
    if distributed.is_zero():
        return "0.00"
    rate = planted.to_decimal() / distributed.to_decimal() * 100
    return str(rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _children_aggregate():
    return (
        select(
            ChildAllocation.parent_id,
            func.sum(ChildAllocation.quantity).label("allocated"),
            func.count(ChildAllocation.id).label("child_count"),
        )
        .group_by(ChildAllocation.parent_id)
        .subquery("child_totals")
    )


# ── Seedling allocations ─────────────────────────────────────


async def root_allocation_overview(
    db: AsyncSession,
    recipient_id: str | None = None,
    distributor_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> PaginatedResponse[RootAllocationRow]:
    children = _children_aggregate()
    filters = []
    if recipient_id:
        filters.append(RootAllocation.recipient_id == recipient_id)
    if distributor_id:
        filters.append(RootAllocation.distributor_id == distributor_id)

    total = (
        await db.execute(select(func.count()).select_from(RootAllocation).where(*filters))
    ).scalar_one()

    result = await db.execute(
        select(RootAllocation, children.c.allocated, children.c.child_count)
        .outerjoin(children, children.c.parent_id == RootAllocation.id)
        .where(*filters)
        .order_by(RootAllocation.created_at.desc(), RootAllocation.id)
        .limit(limit)
        .offset(offset)
    )

    items = []
    for root, allocated, child_count in result.all():
        allocated = _qty(allocated)
        items.append(RootAllocationRow(
            id=root.id,
            resource_kind=root.resource_kind,
            distributor_id=root.distributor_id,
            recipient_id=root.recipient_id,
            quantity=root.quantity,
            allocated=allocated,
            remaining=remaining_capacity(root.quantity, allocated),
            child_count=child_count or 0,
            status=root.status,
            created_at=root.created_at,
        ))

    return PaginatedResponse[RootAllocationRow](
        items=items, total=total, limit=limit, offset=offset
    )


async def seedling_statistics(
    db: AsyncSession,
    since: datetime | None = None,
    recipient_id: str | None = None,
) -> SeedlingStats:
    """Association and farmer distribution totals plus the planting rate.

    ``since`` (default: start of the current month) only bounds the
    ``count_since`` figures; totals always cover every live record.
    ``recipient_id`` narrows to one association's root grants and the
    children carved out of them.
    """
    if since is None:
        since = utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    root_filters = [RootAllocation.status != RootStatus.CANCELLED]
    child_filters = []
    if recipient_id:
        root_filters.append(RootAllocation.recipient_id == recipient_id)
        child_filters.append(
            ChildAllocation.parent_id.in_(
                select(RootAllocation.id).where(RootAllocation.recipient_id == recipient_id)
            )
        )

    root_count, root_total = (await db.execute(
        select(func.count(RootAllocation.id), func.sum(RootAllocation.quantity))
        .where(*root_filters)
    )).one()
    root_since = (await db.execute(
        select(func.count(RootAllocation.id))
        .where(*root_filters, RootAllocation.created_at >= since)
    )).scalar_one()

    by_state: dict[str, Decimal] = {}
    child_count = 0
    child_total = Quantity.zero()
    result = await db.execute(
        select(
            ChildAllocation.lifecycle_state,
            func.count(ChildAllocation.id),
            func.sum(ChildAllocation.quantity),
        )
        .where(*child_filters)
        .group_by(ChildAllocation.lifecycle_state)
    )
    for state, count, quantity in result.all():
        quantity = _qty(quantity)
        by_state[state.value] = quantity.to_decimal()
        child_count += count
        child_total = child_total + quantity
    child_since = (await db.execute(
        select(func.count(ChildAllocation.id))
        .where(*child_filters, ChildAllocation.created_at >= since)
    )).scalar_one()

    planted = Quantity(by_state.get(LifecycleState.PLANTED.value, 0))

    return SeedlingStats(
        association_distributions=DistributionTier(
            count=root_count,
            count_since=root_since,
            total_quantity=_qty(root_total).to_decimal(),
        ),
        farmer_distributions=DistributionTier(
            count=child_count,
            count_since=child_since,
            total_quantity=child_total.to_decimal(),
        ),
        planted_quantity=planted.to_decimal(),
        quantity_by_state=by_state,
        planting_rate=_planting_rate(planted, child_total),
    )


# ── Fiber stock ──────────────────────────────────────────────


async def stock_statistics(db: AsyncSession) -> StockStats:
    count_by_status: dict[str, int] = {}
    record_count = 0
    total_initial = Quantity.zero()
    total_remaining = Quantity.zero()
    result = await db.execute(
        select(
            StockRecord.status,
            func.count(StockRecord.id),
            func.sum(StockRecord.initial_quantity),
            func.sum(StockRecord.remaining_quantity),
        ).group_by(StockRecord.status)
    )
    for status, count, initial, remaining in result.all():
        count_by_status[status.value] = count
        record_count += count
        total_initial = total_initial + _qty(initial)
        total_remaining = total_remaining + _qty(remaining)

    # Written-off balances are not available for distribution
    result = await db.execute(
        select(StockRecord.resource_kind, func.sum(StockRecord.remaining_quantity))
        .where(StockRecord.written_off_at.is_(None))
        .group_by(StockRecord.resource_kind)
    )
    remaining_by_kind = {
        kind: _qty(remaining).to_decimal() for kind, remaining in result.all()
    }

    return StockStats(
        record_count=record_count,
        total_initial=total_initial.to_decimal(),
        total_remaining=total_remaining.to_decimal(),
        count_by_status=count_by_status,
        remaining_by_kind=remaining_by_kind,
    )


async def withdrawal_statistics(db: AsyncSession, days: int = 30) -> WithdrawalStats:
    window_start = utcnow() - timedelta(days=days)

    by_type: dict[str, Decimal] = {}
    count = 0
    total = Quantity.zero()
    result = await db.execute(
        select(
            Withdrawal.recipient_type,
            func.count(Withdrawal.id),
            func.sum(Withdrawal.quantity),
        ).group_by(Withdrawal.recipient_type)
    )
    for recipient_type, n, quantity in result.all():
        quantity = _qty(quantity)
        by_type[recipient_type or "unspecified"] = quantity.to_decimal()
        count += n
        total = total + quantity

    window_count, window_quantity = (await db.execute(
        select(func.count(Withdrawal.id), func.sum(Withdrawal.quantity))
        .where(Withdrawal.created_at >= window_start)
    )).one()

    return WithdrawalStats(
        count=count,
        total_quantity=total.to_decimal(),
        by_recipient_type=by_type,
        window_days=days,
        count_in_window=window_count,
        quantity_in_window=_qty(window_quantity).to_decimal(),
    )


# ── Deliveries ───────────────────────────────────────────────


async def delivery_statistics(db: AsyncSession) -> DeliveryStats:
    result = await db.execute(
        select(UnitDeliveryRecord.state, func.count(UnitDeliveryRecord.id))
        .group_by(UnitDeliveryRecord.state)
    )
    count_by_state = {state.value: n for state, n in result.all()}

    paid = Quantity.zero()
    unpaid = Quantity.zero()
    result = await db.execute(
        select(UnitDeliveryRecord.payment_state, func.sum(Withdrawal.quantity))
        .join(Withdrawal, Withdrawal.id == UnitDeliveryRecord.source_withdrawal_id)
        .group_by(UnitDeliveryRecord.payment_state)
    )
    for payment_state, quantity in result.all():
        if payment_state == PaymentState.PAID:
            paid = paid + _qty(quantity)
        else:
            unpaid = unpaid + _qty(quantity)

    return DeliveryStats(
        count=sum(count_by_state.values()),
        count_by_state=count_by_state,
        paid_quantity=paid.to_decimal(),
        unpaid_quantity=unpaid.to_decimal(),
    )
