"""Typed failures returned by the allocation engine and unit lifecycle.

Every failure carries enough context (remaining capacity, current state,
missing fields) for the caller to act without a follow-up read.  None of
them knows about HTTP; the adapter in middleware/exceptions.py maps
``error_code`` to a status code.
"""

from __future__ import annotations

from typing import Any


class AllocationError(Exception):
    """Base class for every typed engine failure."""

    error_code = "ALLOCATION_ERROR"
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "code": self.error_code,
            "message": self.message,
            "details": {k: _plain(v) for k, v in self.details.items()},
        }


def _plain(value):
    # Quantity / enums → JSON-friendly scalars
    if hasattr(value, "to_decimal"):
        return str(value)
    if hasattr(value, "value") and not isinstance(value, (str, int, float)):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ── Conservation ────────────────────────────────────────────


class ExceedsAllocation(AllocationError):
    """Children would sum past the parent's quantity."""

    error_code = "EXCEEDS_ALLOCATION"
    retryable = True

    def __init__(self, requested, remaining, parent_id: str | None = None):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot allocate {requested}. Only {remaining} remaining.",
            requested=requested,
            remaining=remaining,
            parent_id=parent_id,
        )


class InsufficientStock(AllocationError):
    """Withdrawal larger than the stock record's remaining balance."""

    error_code = "INSUFFICIENT_STOCK"
    retryable = True

    def __init__(self, requested, remaining, stock_id: str | None = None):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Insufficient stock: requested {requested}, available {remaining}.",
            requested=requested,
            remaining=remaining,
            stock_id=stock_id,
        )


# ── Admission preconditions ─────────────────────────────────


class AlreadyAdmitted(AllocationError):
    error_code = "ALREADY_ADMITTED"

    def __init__(self, source_batch_id: str):
        super().__init__(
            f"Harvest batch {source_batch_id} is already in stock",
            source_batch_id=source_batch_id,
        )


class NotVerified(AllocationError):
    error_code = "NOT_VERIFIED"

    def __init__(self, source_batch_id: str, verification_status):
        super().__init__(
            "Only verified harvests can be added to stock",
            source_batch_id=source_batch_id,
            verification_status=verification_status,
        )


# ── Lifecycle misuse ────────────────────────────────────────


class InvalidTransition(AllocationError):
    error_code = "INVALID_TRANSITION"

    def __init__(self, record_id: str, current_state, target_state, reason: str | None = None):
        self.current_state = current_state
        self.target_state = target_state
        message = f"Cannot move {record_id} from {_plain(current_state)} to {_plain(target_state)}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            record_id=record_id,
            current_state=current_state,
            target_state=target_state,
        )


class MissingEvidence(AllocationError):
    error_code = "MISSING_EVIDENCE"

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"Missing required evidence: {', '.join(missing)}",
            missing=missing,
        )


class NotYetDelivered(AllocationError):
    error_code = "NOT_YET_DELIVERED"

    def __init__(self, delivery_id: str, current_state):
        self.current_state = current_state
        super().__init__(
            f"Delivery {delivery_id} cannot be paid while {_plain(current_state)}",
            delivery_id=delivery_id,
            current_state=current_state,
        )


class DuplicateDelivery(AllocationError):
    error_code = "DUPLICATE_DELIVERY"

    def __init__(self, withdrawal_id: str):
        super().__init__(
            f"Withdrawal {withdrawal_id} already has a delivery record",
            withdrawal_id=withdrawal_id,
        )


# ── Deletion / lookup / access ──────────────────────────────


class HasDependents(AllocationError):
    error_code = "HAS_DEPENDENTS"

    def __init__(self, resource: str, record_id: str, dependents: int):
        super().__init__(
            f"Cannot remove {resource} {record_id}: {dependents} dependent record(s) exist",
            resource=resource,
            record_id=record_id,
            dependents=dependents,
        )


class NotFound(AllocationError):
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, record_id: str):
        super().__init__(
            f"{resource} not found: {record_id}",
            resource=resource,
            record_id=record_id,
        )


class PermissionDenied(AllocationError):
    error_code = "PERMISSION_DENIED"

    def __init__(self, message: str = "Not authorized to change this record"):
        super().__init__(message)


# ── Storage ─────────────────────────────────────────────────


class StorageUnavailable(AllocationError):
    """Transient storage failure or timeout; the call had no effect."""

    error_code = "STORAGE_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message)
