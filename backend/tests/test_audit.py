"""Conservation audit tests.

Drift is injected with direct writes that bypass the engine; the audit
must find it without fixing anything.
"""

import pytest
from sqlalchemy import update

from abacatrack.models.allocation import ChildAllocation, RootAllocation, RootStatus
from abacatrack.models.delivery import PaymentState, UnitDeliveryRecord
from abacatrack.models.stock import StockRecord, StockStatus
from abacatrack.quantity import Quantity
from abacatrack.services.audit import (
    check_delivery_payments,
    check_root_allocations,
    check_stock_records,
    run_conservation_audit,
    summarize,
)


async def _audit(session_factory, check=run_conservation_audit):
    async with session_factory() as db:
        return await check(db)


@pytest.mark.integration
class TestConservationAudit:
    async def test_clean_database(
        self, allocation_engine, lifecycle, verified_harvest, session_factory
    ):
        root = await allocation_engine.create_root_allocation("o", "a", "abaca", "10")
        await allocation_engine.create_child_allocation(root.id, "f", "10")
        stock = await allocation_engine.admit_batch_to_stock((await verified_harvest("5")).id)
        result = await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "2")
        await lifecycle.create_delivery(result.withdrawal.id)

        assert await _audit(session_factory) == []

    async def test_over_allocated_root(self, allocation_engine, session_factory):
        root = await allocation_engine.create_root_allocation("o", "a", "abaca", "10")
        await allocation_engine.create_child_allocation(root.id, "f1", "10")

        async with session_factory() as db:
            db.add(ChildAllocation(parent_id=root.id, recipient_id="f2", quantity=Quantity(3)))
            await db.commit()

        findings = await _audit(session_factory, check_root_allocations)
        assert [f.kind for f in findings] == ["over_allocated"]
        assert findings[0].record_id == root.id
        assert "total 13" in findings[0].message

    async def test_root_status_drift(self, allocation_engine, session_factory):
        root = await allocation_engine.create_root_allocation("o", "a", "abaca", "10")
        await allocation_engine.create_child_allocation(root.id, "f1", "4")

        async with session_factory() as db:
            await db.execute(
                update(RootAllocation)
                .where(RootAllocation.id == root.id)
                .values(status=RootStatus.FULLY_RESUBDIVIDED)
            )
            await db.commit()

        findings = await _audit(session_factory, check_root_allocations)
        assert [(f.kind, f.record_id) for f in findings] == [("root_status_drift", root.id)]
        assert "expected partially_resubdivided" in findings[0].message

    async def test_stock_balance_and_status_drift(
        self, allocation_engine, verified_harvest, session_factory
    ):
        stock = await allocation_engine.admit_batch_to_stock((await verified_harvest("20")).id)
        await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "5")

        # 15 is right; 12 stays within the CHECK constraints but loses 3
        async with session_factory() as db:
            await db.execute(
                update(StockRecord)
                .where(StockRecord.id == stock.id)
                .values(remaining_quantity=Quantity(12), status=StockStatus.STOCKED)
            )
            await db.commit()

        findings = await _audit(session_factory, check_stock_records)
        kinds = sorted(f.kind for f in findings)
        assert kinds == ["stock_balance_drift", "stock_status_drift"]
        balance = next(f for f in findings if f.kind == "stock_balance_drift")
        assert "is 15" in balance.message

    async def test_paid_before_delivery(
        self, allocation_engine, lifecycle, verified_harvest, session_factory
    ):
        stock = await allocation_engine.admit_batch_to_stock((await verified_harvest("20")).id)
        result = await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "5")
        delivery = await lifecycle.create_delivery(result.withdrawal.id)

        async with session_factory() as db:
            await db.execute(
                update(UnitDeliveryRecord)
                .where(UnitDeliveryRecord.id == delivery.id)
                .values(payment_state=PaymentState.PAID)
            )
            await db.commit()

        findings = await _audit(session_factory, check_delivery_payments)
        assert [(f.kind, f.record_id) for f in findings] == [("paid_before_delivery", delivery.id)]

    async def test_summary_counts_by_kind(self, allocation_engine, session_factory):
        root = await allocation_engine.create_root_allocation("o", "a", "abaca", "1")
        async with session_factory() as db:
            db.add(ChildAllocation(parent_id=root.id, recipient_id="f", quantity=Quantity(2)))
            await db.commit()

        report = summarize(await _audit(session_factory))
        # over-allocated, and its stored status still says "allocated"
        assert report.total_findings == 2
        assert report.by_kind == {"over_allocated": 1, "root_status_drift": 1}
        assert {f.record_id for f in report.findings} == {root.id}
