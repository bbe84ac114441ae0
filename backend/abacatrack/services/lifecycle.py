"""Unit lifecycle — per-unit terminal states for child grants and deliveries.

Child allocation (planting outcome):
    distributed → planted    (requires evidence: date, location, photo refs)
    distributed → damaged | lost | replanted | other
All outcomes are terminal; a replant is recorded as a new child grant.

Delivery (one per withdrawal):
    in_transit → confirmed → delivered → completed   (forward skips allowed)
    any non-terminal → cancelled                      (reason required)
Payment: unpaid → paid, once the delivery is delivered or completed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.ext.asyncio import async_sessionmaker

from abacatrack.config import settings
from abacatrack.database import async_session, atomic, utcnow
from abacatrack.errors import (
    InvalidTransition,
    MissingEvidence,
    NotYetDelivered,
    PermissionDenied,
)
from abacatrack.models.allocation import ChildAllocation, LifecycleState
from abacatrack.models.delivery import DeliveryState, PaymentState, UnitDeliveryRecord
from abacatrack.services import store
from abacatrack.services.status import can_mark_paid, delivery_transition_allowed

logger = logging.getLogger(__name__)

MAX_PROOF_REFS = 3

OUTCOME_STATES = frozenset({
    LifecycleState.DAMAGED,
    LifecycleState.LOST,
    LifecycleState.REPLANTED,
    LifecycleState.OTHER,
})

# Which timestamp column each delivery state stamps
_DELIVERY_TIMESTAMPS = {
    DeliveryState.CONFIRMED: "confirmed_at",
    DeliveryState.DELIVERED: "delivered_at",
    DeliveryState.COMPLETED: "completed_at",
    DeliveryState.CANCELLED: "cancelled_at",
}


@dataclass
class PlantingEvidence:
    planted_on: date | None = None
    location: str | None = None
    proof_refs: list[str] = field(default_factory=list)
    notes: str | None = None

    def missing(self) -> list[str]:
        missing = []
        if self.planted_on is None:
            missing.append("planted_on")
        if not self.location or not self.location.strip():
            missing.append("location")
        if not self.usable_refs():
            missing.append("proof_refs")
        return missing

    def usable_refs(self) -> list[str]:
        return [ref.strip() for ref in self.proof_refs if ref and ref.strip()]


class UnitLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.storage_timeout_seconds

    def _tx(self, timeout: float | None):
        return atomic(self._session_factory, timeout if timeout is not None else self.timeout)

    # ── Child allocations ──────────────────────────────────────

    async def mark_child_planted(
        self,
        child_id: str,
        evidence: PlantingEvidence,
        actor_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ChildAllocation:
        """Record planting of a distributed grant.

        Raises MissingEvidence before touching storage when the date,
        location or proof references are absent.  With ``actor_id`` set,
        only the farmer who received the grant may mark it planted.
        """
        missing = evidence.missing()
        if missing:
            raise MissingEvidence(missing)
        proof_refs = evidence.usable_refs()
        if len(proof_refs) > MAX_PROOF_REFS:
            raise ValueError(f"At most {MAX_PROOF_REFS} proof references are accepted")

        async with self._tx(timeout) as db:
            child = await store.get_child(db, child_id, for_update=True)
            if actor_id is not None and actor_id != child.recipient_id:
                logger.warning(
                    f"Planting of child {child.id} refused for {actor_id}",
                    extra={"child_id": child.id, "actor_id": actor_id},
                )
                raise PermissionDenied("Only the receiving farmer can mark this grant planted")
            if child.lifecycle_state != LifecycleState.DISTRIBUTED:
                raise InvalidTransition(child.id, child.lifecycle_state, LifecycleState.PLANTED)

            child.lifecycle_state = LifecycleState.PLANTED
            child.planted_on = evidence.planted_on
            child.planting_location = evidence.location.strip()
            child.planting_proof_refs = proof_refs
            child.planting_notes = evidence.notes
            child.planted_by = actor_id
            child.planted_at = utcnow()
            await db.flush()

        logger.info(f"Child allocation {child_id} planted on {evidence.planted_on}")
        return child

    async def record_child_outcome(
        self,
        child_id: str,
        state: LifecycleState,
        notes: str | None = None,
        farmer_id: str | None = None,
        association_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ChildAllocation:
        """Record a terminal outcome other than planting.

        ``farmer_id`` restricts the call to the farmer holding the grant;
        ``association_id`` to the association that owns its root.
        """
        state = LifecycleState(state)
        if state not in OUTCOME_STATES:
            raise ValueError(f"{state.value} is not an outcome; use mark_child_planted for planting")

        async with self._tx(timeout) as db:
            child = await store.get_child(db, child_id, for_update=True)
            if farmer_id is not None and farmer_id != child.recipient_id:
                raise PermissionDenied("Only the receiving farmer can record this outcome")
            if association_id is not None:
                root = await store.get_root(db, child.parent_id)
                if association_id != root.recipient_id:
                    raise PermissionDenied("Grant belongs to another association")
            if child.lifecycle_state != LifecycleState.DISTRIBUTED:
                raise InvalidTransition(child.id, child.lifecycle_state, state)
            child.lifecycle_state = state
            child.outcome_notes = notes
            child.outcome_at = utcnow()
            await db.flush()

        logger.info(f"Child allocation {child_id} → {state.value}")
        return child

    # ── Deliveries ─────────────────────────────────────────────

    async def create_delivery(
        self,
        withdrawal_id: str,
        buyer_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> UnitDeliveryRecord:
        async with self._tx(timeout) as db:
            await store.get_withdrawal(db, withdrawal_id)
            delivery = UnitDeliveryRecord(
                source_withdrawal_id=withdrawal_id,
                buyer_id=buyer_id,
                state=DeliveryState.IN_TRANSIT,
                payment_state=PaymentState.UNPAID,
                dispatched_at=utcnow(),
            )
            await store.insert_delivery(db, delivery)

        logger.info(f"Delivery {delivery.id} dispatched for withdrawal {withdrawal_id}")
        return delivery

    async def advance_delivery(
        self,
        delivery_id: str,
        target_state: DeliveryState,
        reason: str | None = None,
        buyer_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> UnitDeliveryRecord:
        """Move a delivery forward, or cancel it with a reason.

        With ``buyer_id`` set, only the buyer the delivery was dispatched to
        may move it.
        """
        target_state = DeliveryState(target_state)
        if target_state == DeliveryState.CANCELLED and (not reason or not reason.strip()):
            raise MissingEvidence(["reason"])

        async with self._tx(timeout) as db:
            delivery = await store.get_delivery(db, delivery_id, for_update=True)
            if buyer_id is not None and buyer_id != delivery.buyer_id:
                raise PermissionDenied("Delivery belongs to another buyer")
            current = delivery.state
            if not delivery_transition_allowed(current, target_state):
                logger.warning(
                    f"Delivery {delivery.id}: {current.value} → {target_state.value} refused",
                    extra={"delivery_id": delivery.id, "error_code": InvalidTransition.error_code},
                )
                raise InvalidTransition(delivery.id, current, target_state)

            now = utcnow()
            delivery.state = target_state
            setattr(delivery, _DELIVERY_TIMESTAMPS[target_state], now)
            if target_state == DeliveryState.CANCELLED:
                delivery.cancellation_reason = reason.strip()
            await db.flush()

        logger.info(f"Delivery {delivery_id}: {current.value} → {target_state.value}")
        return delivery

    async def mark_delivery_paid(
        self,
        delivery_id: str,
        payment_method: str | None = None,
        *,
        timeout: float | None = None,
    ) -> UnitDeliveryRecord:
        async with self._tx(timeout) as db:
            delivery = await store.get_delivery(db, delivery_id, for_update=True)
            if delivery.payment_state == PaymentState.PAID:
                raise InvalidTransition(delivery.id, PaymentState.PAID, PaymentState.PAID)
            if not can_mark_paid(delivery.state):
                raise NotYetDelivered(delivery.id, delivery.state)
            delivery.payment_state = PaymentState.PAID
            delivery.payment_method = payment_method
            delivery.paid_at = utcnow()
            await db.flush()

        logger.info(f"Delivery {delivery_id} marked paid ({payment_method or 'unspecified'})")
        return delivery
