"""Derived status — the single writer of every status column.

All functions are pure: they map (quantity, aggregate) pairs to the
enumerated statuses.  Nothing else assigns ``RootAllocation.status`` or
``StockRecord.status``; the engine calls these after every change to the
underlying aggregate.  The delivery transition table lives here as well so
the lifecycle service and the audit read the same rules.
"""

from abacatrack.models.allocation import RootStatus
from abacatrack.models.delivery import DeliveryState
from abacatrack.models.stock import StockStatus
from abacatrack.quantity import Quantity


# ── Aggregated-children allocation ──────────────────────────


def derive_root_status(
    quantity: Quantity,
    allocated: Quantity,
    cancelled: bool = False,
) -> RootStatus:
    """sum == 0 → allocated, 0 < sum < quantity → partial, sum >= quantity → full."""
    if cancelled:
        return RootStatus.CANCELLED
    if allocated.is_zero():
        return RootStatus.ALLOCATED
    if allocated < quantity:
        return RootStatus.PARTIALLY_RESUBDIVIDED
    return RootStatus.FULLY_RESUBDIVIDED


# ── Running-balance allocation ──────────────────────────────


def derive_stock_status(
    initial: Quantity,
    remaining: Quantity,
    written_off: bool = False,
) -> StockStatus:
    """remaining == initial → stocked, 0 < remaining < initial → partial, 0 → full."""
    if written_off:
        return StockStatus.DAMAGED
    if remaining.is_zero():
        return StockStatus.FULLY_DISTRIBUTED
    if remaining < initial:
        return StockStatus.PARTIALLY_DISTRIBUTED
    return StockStatus.STOCKED


# ── Delivery pipeline ───────────────────────────────────────

# Forward order; a later state may be reached directly from an earlier one.
DELIVERY_SEQUENCE = (
    DeliveryState.IN_TRANSIT,
    DeliveryState.CONFIRMED,
    DeliveryState.DELIVERED,
    DeliveryState.COMPLETED,
)

TERMINAL_DELIVERY_STATES = frozenset({DeliveryState.COMPLETED, DeliveryState.CANCELLED})

PAYABLE_DELIVERY_STATES = frozenset({DeliveryState.DELIVERED, DeliveryState.COMPLETED})


def is_terminal_delivery(state: DeliveryState) -> bool:
    return state in TERMINAL_DELIVERY_STATES


def delivery_transition_allowed(current: DeliveryState, target: DeliveryState) -> bool:
    if is_terminal_delivery(current):
        return False
    if target == DeliveryState.CANCELLED:
        return True
    return DELIVERY_SEQUENCE.index(target) > DELIVERY_SEQUENCE.index(current)


def allowed_delivery_targets(current: DeliveryState) -> list[DeliveryState]:
    return [s for s in DeliveryState if delivery_transition_allowed(current, s)]


def can_mark_paid(state: DeliveryState) -> bool:
    return state in PAYABLE_DELIVERY_STATES
