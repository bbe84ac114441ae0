"""Conservation audit — detects records that break the allocation invariants.

Each check_* function runs one read-only comparison and returns a list of
AuditFinding objects.  ``run_conservation_audit`` runs every check in a
single pass; nothing is written, so it can run against production at any
time (CLI: ``python -m abacatrack.cli audit``).

Checks:
    - over_allocated        Σ children > root quantity
    - root_status_drift     stored root status ≠ derived status
    - stock_balance_drift   remaining ≠ initial − Σ withdrawals
    - stock_status_drift    stored stock status ≠ derived status
    - paid_before_delivery  payment recorded on an undelivered shipment
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from abacatrack.database import utcnow
from abacatrack.models.allocation import ChildAllocation, RootAllocation
from abacatrack.models.delivery import DeliveryState, PaymentState, UnitDeliveryRecord
from abacatrack.models.stock import StockRecord, Withdrawal
from abacatrack.quantity import Quantity
from abacatrack.schemas.report import AuditFindingOut, AuditReport
from abacatrack.services.status import derive_root_status, derive_stock_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditFinding:
    kind: str
    record_id: str
    message: str


def _qty(value) -> Quantity:
    return value if value is not None else Quantity.zero()


# ─────────────────────────────────────────────────────────────
# CHECK 1 + 2:  root allocations vs their children
# ─────────────────────────────────────────────────────────────

async def check_root_allocations(db: AsyncSession) -> list[AuditFinding]:
    """Flag roots whose children overrun them, and roots whose stored
    status no longer matches what the children say it should be."""

    child_totals = (
        select(
            ChildAllocation.parent_id,
            func.sum(ChildAllocation.quantity).label("allocated"),
            func.count(ChildAllocation.id).label("child_count"),
        )
        .group_by(ChildAllocation.parent_id)
        .subquery()
    )

    result = await db.execute(
        select(
            RootAllocation.id,
            RootAllocation.quantity,
            RootAllocation.status,
            RootAllocation.cancelled_at,
            child_totals.c.allocated,
            child_totals.c.child_count,
        ).outerjoin(child_totals, RootAllocation.id == child_totals.c.parent_id)
    )

    findings = []
    for row in result.all():
        allocated = _qty(row.allocated)

        if allocated > row.quantity:
            findings.append(AuditFinding(
                kind="over_allocated",
                record_id=row.id,
                message=(
                    f"Root {row.id} grants {row.quantity} but its "
                    f"{row.child_count} children total {allocated}"
                ),
            ))

        expected = derive_root_status(
            row.quantity, allocated, cancelled=row.cancelled_at is not None
        )
        if row.status != expected:
            findings.append(AuditFinding(
                kind="root_status_drift",
                record_id=row.id,
                message=f"Root {row.id} is {row.status.value}, expected {expected.value}",
            ))

    return findings


# ─────────────────────────────────────────────────────────────
# CHECK 3 + 4:  stock balance vs withdrawals
# ─────────────────────────────────────────────────────────────

async def check_stock_records(db: AsyncSession) -> list[AuditFinding]:
    """Flag stock whose running balance disagrees with its withdrawal
    history, and stock whose stored status disagrees with its balance."""

    withdrawal_totals = (
        select(
            Withdrawal.stock_record_id,
            func.sum(Withdrawal.quantity).label("withdrawn"),
        )
        .group_by(Withdrawal.stock_record_id)
        .subquery()
    )

    result = await db.execute(
        select(
            StockRecord.id,
            StockRecord.initial_quantity,
            StockRecord.remaining_quantity,
            StockRecord.status,
            StockRecord.written_off_at,
            withdrawal_totals.c.withdrawn,
        ).outerjoin(withdrawal_totals, StockRecord.id == withdrawal_totals.c.stock_record_id)
    )

    findings = []
    for row in result.all():
        withdrawn = _qty(row.withdrawn)
        # Decimal arithmetic: an overdrawn record must still be reportable
        expected_remaining = row.initial_quantity.to_decimal() - withdrawn.to_decimal()

        if row.remaining_quantity.to_decimal() != expected_remaining:
            findings.append(AuditFinding(
                kind="stock_balance_drift",
                record_id=row.id,
                message=(
                    f"Stock {row.id} shows {row.remaining_quantity} remaining; "
                    f"initial {row.initial_quantity} less {withdrawn} withdrawn "
                    f"is {expected_remaining.normalize():f}"
                ),
            ))

        expected = derive_stock_status(
            row.initial_quantity,
            row.remaining_quantity,
            written_off=row.written_off_at is not None,
        )
        if row.status != expected:
            findings.append(AuditFinding(
                kind="stock_status_drift",
                record_id=row.id,
                message=f"Stock {row.id} is {row.status.value}, expected {expected.value}",
            ))

    return findings


# ─────────────────────────────────────────────────────────────
# CHECK 5:  payment recorded before delivery
# ─────────────────────────────────────────────────────────────

async def check_delivery_payments(db: AsyncSession) -> list[AuditFinding]:
    result = await db.execute(
        select(UnitDeliveryRecord.id, UnitDeliveryRecord.state).where(
            UnitDeliveryRecord.payment_state == PaymentState.PAID,
            UnitDeliveryRecord.state.in_([DeliveryState.IN_TRANSIT, DeliveryState.CONFIRMED]),
        )
    )
    return [
        AuditFinding(
            kind="paid_before_delivery",
            record_id=row.id,
            message=f"Delivery {row.id} is paid while still {row.state.value}",
        )
        for row in result.all()
    ]


async def run_conservation_audit(db: AsyncSession) -> list[AuditFinding]:
    """Execute all audit checks and return every finding."""
    findings: list[AuditFinding] = []

    checks = [
        check_root_allocations,
        check_stock_records,
        check_delivery_payments,
    ]

    for check_fn in checks:
        findings.extend(await check_fn(db))

    if findings:
        logger.warning(
            f"Conservation audit found {len(findings)} problem(s)",
            extra={"kinds": sorted({f.kind for f in findings})},
        )
    else:
        logger.info("Conservation audit clean")
    return findings


def summarize(findings: list[AuditFinding]) -> AuditReport:
    by_kind: dict[str, int] = {}
    for f in findings:
        by_kind[f.kind] = by_kind.get(f.kind, 0) + 1

    return AuditReport(
        ran_at=utcnow(),
        total_findings=len(findings),
        by_kind=by_kind,
        findings=[
            AuditFindingOut(kind=f.kind, record_id=f.record_id, message=f.message)
            for f in findings
        ],
    )
