"""UnitLifecycle tests: planting outcomes and the delivery pipeline."""

from datetime import date

import pytest

from abacatrack.errors import (
    DuplicateDelivery,
    InvalidTransition,
    MissingEvidence,
    NotFound,
    NotYetDelivered,
    PermissionDenied,
)
from abacatrack.models.allocation import LifecycleState
from abacatrack.models.delivery import DeliveryState, PaymentState
from abacatrack.services import store
from abacatrack.services.lifecycle import PlantingEvidence

EVIDENCE = PlantingEvidence(
    planted_on=date(2026, 6, 1),
    location="Sitio Malinao, Brgy. San Isidro",
    proof_refs=["upload://plot-1.jpg", "upload://plot-2.jpg"],
    notes="Planted along contour lines",
)


@pytest.fixture
async def child(allocation_engine):
    root = await allocation_engine.create_root_allocation(
        "officer-1", "assoc-1", "abaca suckers", "100"
    )
    result = await allocation_engine.create_child_allocation(root.id, "farmer-1", "25")
    return result.child


@pytest.fixture
async def withdrawal(allocation_engine, verified_harvest):
    harvest = await verified_harvest(quantity="40")
    stock = await allocation_engine.admit_batch_to_stock(harvest.id)
    result = await allocation_engine.create_withdrawal(stock.id, "Buyer Co.", "10")
    return result.withdrawal


@pytest.mark.integration
class TestPlanting:
    async def test_mark_planted(self, lifecycle, child):
        planted = await lifecycle.mark_child_planted(child.id, EVIDENCE, actor_id="farmer-1")
        assert planted.lifecycle_state == LifecycleState.PLANTED
        assert planted.planted_on == date(2026, 6, 1)
        assert planted.planting_proof_refs == ["upload://plot-1.jpg", "upload://plot-2.jpg"]
        assert planted.planted_by == "farmer-1"
        assert planted.planted_at is not None

    async def test_missing_evidence_lists_fields(self, lifecycle, child):
        with pytest.raises(MissingEvidence) as exc_info:
            await lifecycle.mark_child_planted(child.id, PlantingEvidence(location=" "))
        assert exc_info.value.missing == ["planted_on", "location", "proof_refs"]

    async def test_blank_proof_refs_do_not_count(self, lifecycle, child, session_factory):
        evidence = PlantingEvidence(
            planted_on=date(2026, 1, 1), location="Plot 1", proof_refs=["   ", ""]
        )
        with pytest.raises(MissingEvidence) as exc_info:
            await lifecycle.mark_child_planted(child.id, evidence)
        assert exc_info.value.missing == ["proof_refs"]

        async with session_factory() as db:
            stored = await store.get_child(db, child.id)
        assert stored.lifecycle_state == LifecycleState.DISTRIBUTED

    async def test_proof_refs_are_trimmed(self, lifecycle, child):
        evidence = PlantingEvidence(
            planted_on=date(2026, 1, 1), location="Plot 1", proof_refs=[" upload://a.jpg ", " "]
        )
        planted = await lifecycle.mark_child_planted(child.id, evidence)
        assert planted.planting_proof_refs == ["upload://a.jpg"]

    async def test_outcome_scoped_to_farmer_and_association(self, lifecycle, child):
        with pytest.raises(PermissionDenied):
            await lifecycle.record_child_outcome(
                child.id, LifecycleState.LOST, farmer_id="farmer-2"
            )
        with pytest.raises(PermissionDenied):
            await lifecycle.record_child_outcome(
                child.id, LifecycleState.LOST, association_id="assoc-2"
            )
        lost = await lifecycle.record_child_outcome(
            child.id, LifecycleState.LOST, farmer_id="farmer-1", association_id="assoc-1"
        )
        assert lost.lifecycle_state == LifecycleState.LOST

    async def test_too_many_proof_refs(self, lifecycle, child):
        evidence = PlantingEvidence(
            planted_on=date(2026, 6, 1), location="plot", proof_refs=["a", "b", "c", "d"]
        )
        with pytest.raises(ValueError):
            await lifecycle.mark_child_planted(child.id, evidence)

    async def test_only_recipient_may_mark_planted(self, lifecycle, child):
        with pytest.raises(PermissionDenied):
            await lifecycle.mark_child_planted(child.id, EVIDENCE, actor_id="farmer-2")

    async def test_lost_child_cannot_be_planted(self, lifecycle, child):
        await lifecycle.record_child_outcome(child.id, LifecycleState.LOST, notes="washed out")
        with pytest.raises(InvalidTransition) as exc_info:
            await lifecycle.mark_child_planted(child.id, EVIDENCE)
        assert exc_info.value.current_state == LifecycleState.LOST
        assert exc_info.value.target_state == LifecycleState.PLANTED

    async def test_planted_is_terminal(self, lifecycle, child):
        await lifecycle.mark_child_planted(child.id, EVIDENCE)
        with pytest.raises(InvalidTransition):
            await lifecycle.mark_child_planted(child.id, EVIDENCE)
        with pytest.raises(InvalidTransition):
            await lifecycle.record_child_outcome(child.id, LifecycleState.DAMAGED)

    async def test_replanted_is_terminal(self, lifecycle, child):
        replanted = await lifecycle.record_child_outcome(child.id, LifecycleState.REPLANTED)
        assert replanted.lifecycle_state == LifecycleState.REPLANTED
        assert replanted.outcome_at is not None
        with pytest.raises(InvalidTransition):
            await lifecycle.record_child_outcome(child.id, LifecycleState.OTHER)

    async def test_outcome_must_not_be_planted_or_distributed(self, lifecycle, child):
        with pytest.raises(ValueError):
            await lifecycle.record_child_outcome(child.id, LifecycleState.PLANTED)
        with pytest.raises(ValueError):
            await lifecycle.record_child_outcome(child.id, LifecycleState.DISTRIBUTED)

    async def test_unknown_child(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.mark_child_planted("missing", EVIDENCE)


@pytest.mark.integration
class TestDelivery:
    async def test_new_delivery_in_transit_unpaid(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id, buyer_id="buyer-1")
        assert delivery.state == DeliveryState.IN_TRANSIT
        assert delivery.payment_state == PaymentState.UNPAID
        assert delivery.dispatched_at is not None

    async def test_one_delivery_per_withdrawal(self, lifecycle, withdrawal):
        await lifecycle.create_delivery(withdrawal.id, buyer_id="buyer-1")
        with pytest.raises(DuplicateDelivery):
            await lifecycle.create_delivery(withdrawal.id, buyer_id="buyer-2")

    async def test_unknown_withdrawal(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.create_delivery("missing", buyer_id="buyer-1")

    async def test_full_pipeline_stamps_timestamps(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id, buyer_id="buyer-1")
        for target in (DeliveryState.CONFIRMED, DeliveryState.DELIVERED, DeliveryState.COMPLETED):
            delivery = await lifecycle.advance_delivery(delivery.id, target)
            assert delivery.state == target
        assert delivery.confirmed_at <= delivery.delivered_at <= delivery.completed_at

    async def test_forward_skip(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        delivery = await lifecycle.advance_delivery(delivery.id, DeliveryState.DELIVERED)
        assert delivery.confirmed_at is None
        assert delivery.delivered_at is not None

    async def test_backward_move_rejected(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        await lifecycle.advance_delivery(delivery.id, DeliveryState.DELIVERED)
        with pytest.raises(InvalidTransition):
            await lifecycle.advance_delivery(delivery.id, DeliveryState.CONFIRMED)

    @pytest.mark.parametrize("terminal", [DeliveryState.COMPLETED, DeliveryState.CANCELLED])
    async def test_terminal_states_are_final(self, lifecycle, withdrawal, terminal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        await lifecycle.advance_delivery(delivery.id, terminal, reason="buyer withdrew")
        for target in DeliveryState:
            with pytest.raises(InvalidTransition):
                await lifecycle.advance_delivery(delivery.id, target, reason="again")

    async def test_cancel_requires_reason(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        with pytest.raises(MissingEvidence) as exc_info:
            await lifecycle.advance_delivery(delivery.id, DeliveryState.CANCELLED)
        assert exc_info.value.missing == ["reason"]

        cancelled = await lifecycle.advance_delivery(
            delivery.id, DeliveryState.CANCELLED, reason="truck breakdown"
        )
        assert cancelled.cancellation_reason == "truck breakdown"
        assert cancelled.cancelled_at is not None

    async def test_paid_requires_delivery(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        with pytest.raises(NotYetDelivered):
            await lifecycle.mark_delivery_paid(delivery.id)

        await lifecycle.advance_delivery(delivery.id, DeliveryState.CONFIRMED)
        with pytest.raises(NotYetDelivered):
            await lifecycle.mark_delivery_paid(delivery.id)

        await lifecycle.advance_delivery(delivery.id, DeliveryState.DELIVERED)
        paid = await lifecycle.mark_delivery_paid(delivery.id, payment_method="bank transfer")
        assert paid.payment_state == PaymentState.PAID
        assert paid.payment_method == "bank transfer"
        assert paid.state == DeliveryState.DELIVERED

        with pytest.raises(InvalidTransition):
            await lifecycle.mark_delivery_paid(delivery.id)

    async def test_payment_survives_completion(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        await lifecycle.advance_delivery(delivery.id, DeliveryState.DELIVERED)
        await lifecycle.mark_delivery_paid(delivery.id)
        completed = await lifecycle.advance_delivery(delivery.id, DeliveryState.COMPLETED)
        assert completed.payment_state == PaymentState.PAID

    async def test_completed_can_still_be_paid(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id)
        await lifecycle.advance_delivery(delivery.id, DeliveryState.COMPLETED)
        paid = await lifecycle.mark_delivery_paid(delivery.id)
        assert paid.payment_state == PaymentState.PAID

    async def test_buyer_may_only_move_own_delivery(self, lifecycle, withdrawal):
        delivery = await lifecycle.create_delivery(withdrawal.id, buyer_id="buyer-1")
        with pytest.raises(PermissionDenied):
            await lifecycle.advance_delivery(
                delivery.id, DeliveryState.CONFIRMED, buyer_id="buyer-2"
            )
        confirmed = await lifecycle.advance_delivery(
            delivery.id, DeliveryState.CONFIRMED, buyer_id="buyer-1"
        )
        assert confirmed.state == DeliveryState.CONFIRMED
