"""Aggregate model imports for Alembic auto-detection and metadata.create_all()."""

from abacatrack.models.harvest import HarvestBatch, VerificationStatus
from abacatrack.models.allocation import (
    ChildAllocation,
    LifecycleState,
    RootAllocation,
    RootStatus,
)
from abacatrack.models.stock import StockRecord, StockStatus, Withdrawal
from abacatrack.models.delivery import DeliveryState, PaymentState, UnitDeliveryRecord

__all__ = [
    # External harvest state
    "HarvestBatch", "VerificationStatus",
    # Aggregated-children allocation
    "RootAllocation", "RootStatus", "ChildAllocation", "LifecycleState",
    # Running-balance allocation
    "StockRecord", "StockStatus", "Withdrawal",
    # Per-unit delivery pipeline
    "UnitDeliveryRecord", "DeliveryState", "PaymentState",
]
