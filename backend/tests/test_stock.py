"""Stock admission and withdrawal tests (atomic conditional decrement)."""

import asyncio

import pytest

from abacatrack.errors import (
    AlreadyAdmitted,
    HasDependents,
    InsufficientStock,
    InvalidTransition,
    MissingEvidence,
    NotFound,
    NotVerified,
)
from abacatrack.models.harvest import VerificationStatus
from abacatrack.models.stock import StockStatus
from abacatrack.quantity import Quantity
from abacatrack.services import store


async def _stock_and_withdrawn(session_factory, stock_id):
    async with session_factory() as db:
        stock = await store.get_stock(db, stock_id)
        withdrawn = await store.withdrawals_sum(db, stock_id)
        return stock, withdrawn


@pytest.mark.integration
class TestAdmission:
    async def test_verified_batch_is_admitted(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="250.5")
        record = await allocation_engine.admit_batch_to_stock(
            harvest.id, admitted_by="officer-1", storage_location="Warehouse A"
        )
        assert record.initial_quantity == Quantity("250.5")
        assert record.remaining_quantity == Quantity("250.5")
        assert record.status == StockStatus.STOCKED
        assert record.resource_kind == "tangongon"
        assert record.grade == "S2"

    async def test_explicit_quantity_overrides_harvest(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="100")
        record = await allocation_engine.admit_batch_to_stock(harvest.id, qty="97.25")
        assert record.initial_quantity == Quantity("97.25")

    @pytest.mark.parametrize("status", [VerificationStatus.PENDING, VerificationStatus.REJECTED])
    async def test_unverified_batch_rejected(self, allocation_engine, status):
        harvest = await allocation_engine.record_harvest("farmer-1", "musa textilis", "50")
        if status != VerificationStatus.PENDING:
            await allocation_engine.set_harvest_verification(harvest.id, status)

        with pytest.raises(NotVerified) as exc_info:
            await allocation_engine.admit_batch_to_stock(harvest.id)
        assert exc_info.value.details["verification_status"] == status

    async def test_unknown_batch(self, allocation_engine):
        with pytest.raises(NotFound):
            await allocation_engine.admit_batch_to_stock("no-such-batch")

    async def test_second_admission_fails(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest()
        await allocation_engine.admit_batch_to_stock(harvest.id)
        with pytest.raises(AlreadyAdmitted):
            await allocation_engine.admit_batch_to_stock(harvest.id)

    @pytest.mark.slow
    async def test_concurrent_admission_succeeds_once(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest()

        results = await asyncio.gather(
            *[allocation_engine.admit_batch_to_stock(harvest.id) for _ in range(10)],
            return_exceptions=True,
        )

        admitted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, Exception)]
        assert len(admitted) == 1
        assert len(rejected) == 9
        assert all(isinstance(r, AlreadyAdmitted) for r in rejected)


@pytest.mark.integration
class TestWithdrawal:
    async def test_twenty_then_one(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="20")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        result = await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "20")
        assert result.stock_status == StockStatus.FULLY_DISTRIBUTED
        assert result.remaining == Quantity(0)

        with pytest.raises(InsufficientStock) as exc_info:
            await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "1")
        assert exc_info.value.remaining == Quantity(0)
        assert exc_info.value.requested == Quantity(1)

    async def test_partial_withdrawal(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="20")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        result = await allocation_engine.create_withdrawal(
            stock.id, "Davao Cordage", "7.5",
            recipient_type="processor", distributed_by="officer-1",
        )
        assert result.stock_status == StockStatus.PARTIALLY_DISTRIBUTED
        assert result.remaining == Quantity("12.5")
        assert result.withdrawal.quantity == Quantity("7.5")
        assert result.withdrawal.recipient_type == "processor"

    async def test_overdraw_reports_actual_remaining(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="20")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)
        await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "15")

        with pytest.raises(InsufficientStock) as exc_info:
            await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "6")
        assert exc_info.value.remaining == Quantity(5)

    async def test_unknown_stock(self, allocation_engine):
        with pytest.raises(NotFound):
            await allocation_engine.create_withdrawal("missing", "Buyer Co.", "1")

    @pytest.mark.slow
    async def test_150_racing_withdrawals_on_100(
        self, allocation_engine, verified_harvest, session_factory
    ):
        harvest = await verified_harvest(quantity="100")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        results = await asyncio.gather(
            *[
                allocation_engine.create_withdrawal(stock.id, f"buyer-{i}", "1")
                for i in range(150)
            ],
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 100
        assert len(failed) == 50
        assert all(isinstance(f, InsufficientStock) for f in failed)

        final, withdrawn = await _stock_and_withdrawn(session_factory, stock.id)
        assert final.remaining_quantity == Quantity(0)
        assert final.initial_quantity - withdrawn == final.remaining_quantity
        assert final.status == StockStatus.FULLY_DISTRIBUTED


@pytest.mark.integration
class TestConditionalDecrement:
    """The UPDATE itself guards the balance, independent of transaction locking."""

    async def test_overdraw_matches_no_row(self, allocation_engine, verified_harvest, session_factory):
        harvest = await verified_harvest(quantity="10")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        async with session_factory() as db:
            assert await store.decrement_stock(db, stock.id, Quantity("10.001")) is False
            await db.commit()
        async with session_factory() as db:
            assert (await store.get_stock(db, stock.id)).remaining_quantity == Quantity(10)

    async def test_exact_balance_matches(self, allocation_engine, verified_harvest, session_factory):
        harvest = await verified_harvest(quantity="10")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        async with session_factory() as db:
            assert await store.decrement_stock(db, stock.id, Quantity(10)) is True
            assert await store.decrement_stock(db, stock.id, Quantity("0.001")) is False
            await db.commit()
        async with session_factory() as db:
            assert (await store.get_stock(db, stock.id)).remaining_quantity == Quantity(0)

    async def test_stale_read_cannot_overdraw(
        self, allocation_engine, verified_harvest, session_factory
    ):
        harvest = await verified_harvest(quantity="10")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        async with session_factory() as db:
            # Balance read as 10, then drained before the decrement runs
            seen = (await store.get_stock(db, stock.id)).remaining_quantity
            assert await store.decrement_stock(db, stock.id, Quantity(8)) is True
            assert seen >= Quantity(8)
            assert await store.decrement_stock(db, stock.id, seen - Quantity(2)) is False
            await db.commit()
        async with session_factory() as db:
            assert (await store.get_stock(db, stock.id)).remaining_quantity == Quantity(2)

    async def test_written_off_stock_matches_no_row(
        self, allocation_engine, verified_harvest, session_factory
    ):
        harvest = await verified_harvest(quantity="10")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)
        await allocation_engine.write_off_stock(stock.id, "mould")

        async with session_factory() as db:
            assert await store.decrement_stock(db, stock.id, Quantity(1)) is False


@pytest.mark.integration
class TestWriteOffAndDelete:
    async def test_write_off_blocks_withdrawals(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest(quantity="20")
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)

        damaged = await allocation_engine.write_off_stock(stock.id, "typhoon flooding")
        assert damaged.status == StockStatus.DAMAGED
        assert damaged.remaining_quantity == Quantity(20)

        with pytest.raises(InvalidTransition):
            await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "1")
        with pytest.raises(InvalidTransition):
            await allocation_engine.write_off_stock(stock.id, "again")

    async def test_write_off_requires_reason(self, allocation_engine, verified_harvest):
        harvest = await verified_harvest()
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)
        with pytest.raises(MissingEvidence) as exc_info:
            await allocation_engine.write_off_stock(stock.id, "  ")
        assert exc_info.value.missing == ["reason"]

    async def test_delete_blocked_by_withdrawals(
        self, allocation_engine, verified_harvest, session_factory
    ):
        harvest = await verified_harvest()
        stock = await allocation_engine.admit_batch_to_stock(harvest.id)
        await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "1")

        with pytest.raises(HasDependents):
            await allocation_engine.delete_stock_record(stock.id)

        other = await verified_harvest()
        empty = await allocation_engine.admit_batch_to_stock(other.id)
        await allocation_engine.delete_stock_record(empty.id)
        async with session_factory() as db:
            with pytest.raises(NotFound):
                await store.get_stock(db, empty.id)
