"""Conservation checks — no tier hands out more than it received.

Pure functions, no I/O: the engine loads the aggregate under a lock and
passes it in.  Each check returns the capacity left after the request so
the caller can report it, or raises the matching typed failure.
"""

from typing import Iterable

from abacatrack.errors import ExceedsAllocation, InsufficientStock
from abacatrack.quantity import Quantity, total


def _require_positive(qty: Quantity) -> None:
    if qty.is_zero():
        raise ValueError("Quantity must be greater than zero")


def remaining_capacity(parent_quantity: Quantity, allocated: Quantity) -> Quantity:
    """Capacity left on a root; zero (never negative) if already over."""
    if allocated >= parent_quantity:
        return Quantity.zero()
    return parent_quantity - allocated


def validate_child_create(parent, existing_children_sum: Quantity, new_qty: Quantity) -> Quantity:
    """Fail with ExceedsAllocation when existing + new > parent.quantity."""
    _require_positive(new_qty)
    if existing_children_sum + new_qty > parent.quantity:
        raise ExceedsAllocation(
            requested=new_qty,
            remaining=remaining_capacity(parent.quantity, existing_children_sum),
            parent_id=getattr(parent, "id", None),
        )
    return parent.quantity - (existing_children_sum + new_qty)


def validate_children_batch(
    parent,
    existing_children_sum: Quantity,
    quantities: Iterable[Quantity],
) -> Quantity:
    """Validate several child grants as one unit (all fit, or none are made)."""
    quantities = list(quantities)
    if not quantities:
        raise ValueError("At least one recipient is required")
    for qty in quantities:
        _require_positive(qty)
    return validate_child_create(parent, existing_children_sum, total(quantities))


def validate_withdrawal(stock, new_qty: Quantity) -> Quantity:
    """Fail with InsufficientStock when new_qty > stock.remaining_quantity."""
    _require_positive(new_qty)
    if new_qty > stock.remaining_quantity:
        raise InsufficientStock(
            requested=new_qty,
            remaining=stock.remaining_quantity,
            stock_id=getattr(stock, "id", None),
        )
    return stock.remaining_quantity - new_qty
