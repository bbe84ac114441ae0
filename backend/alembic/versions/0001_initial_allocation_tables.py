"""Initial allocation, stock and delivery tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Quantities are stored as BIGINT thousandths (see abacatrack.quantity).
CHECK constraints back the conservation rules that can be expressed per
row; the cross-row rule (children never exceed their root) is enforced by
the engine under a row lock on the root.
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "harvest_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("farmer_id", sa.String(36), nullable=False),
        sa.Column("resource_kind", sa.String(100), nullable=False),
        sa.Column("grade", sa.String(20), nullable=True),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("harvested_on", sa.Date(), nullable=True),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("verified_by", sa.String(36), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_harvest_batches_farmer_id", "harvest_batches", ["farmer_id"])
    op.create_index("ix_harvest_batches_verification_status", "harvest_batches", ["verification_status"])

    # ── Aggregated-children allocation ───────────────────────
    op.create_table(
        "root_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("resource_kind", sa.String(100), nullable=False),
        sa.Column("source_supplier", sa.String(255), nullable=True),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("distributor_id", sa.String(36), nullable=False),
        sa.Column("recipient_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(40), nullable=False, server_default="allocated"),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("proof_refs", sa.JSON(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_root_allocations_quantity_positive"),
    )
    op.create_index("ix_root_allocations_distributor_id", "root_allocations", ["distributor_id"])
    op.create_index("ix_root_allocations_recipient_id", "root_allocations", ["recipient_id"])
    op.create_index("ix_root_allocations_status", "root_allocations", ["status"])

    op.create_table(
        "child_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("parent_id", sa.String(36), sa.ForeignKey("root_allocations.id"), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("recipient_id", sa.String(36), nullable=False),
        sa.Column("allocated_by", sa.String(36), nullable=True),
        sa.Column("lifecycle_state", sa.String(20), nullable=False, server_default="distributed"),
        sa.Column("planted_on", sa.Date(), nullable=True),
        sa.Column("planting_location", sa.String(255), nullable=True),
        sa.Column("planting_proof_refs", sa.JSON(), nullable=True),
        sa.Column("planting_notes", sa.Text(), nullable=True),
        sa.Column("planted_by", sa.String(36), nullable=True),
        sa.Column("planted_at", sa.DateTime(), nullable=True),
        sa.Column("outcome_notes", sa.Text(), nullable=True),
        sa.Column("outcome_at", sa.DateTime(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_child_allocations_quantity_positive"),
    )
    op.create_index("ix_child_allocations_parent_id", "child_allocations", ["parent_id"])
    op.create_index("ix_child_allocations_recipient_id", "child_allocations", ["recipient_id"])
    op.create_index("ix_child_allocations_lifecycle_state", "child_allocations", ["lifecycle_state"])

    # ── Running-balance allocation ───────────────────────────
    op.create_table(
        "stock_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "source_batch_id", sa.String(36), sa.ForeignKey("harvest_batches.id"),
            nullable=False, unique=True,
        ),
        sa.Column("resource_kind", sa.String(100), nullable=False),
        sa.Column("grade", sa.String(20), nullable=True),
        sa.Column("initial_quantity", sa.BigInteger(), nullable=False),
        sa.Column("remaining_quantity", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="stocked"),
        sa.Column("written_off_at", sa.DateTime(), nullable=True),
        sa.Column("write_off_reason", sa.Text(), nullable=True),
        sa.Column("admitted_by", sa.String(36), nullable=True),
        sa.Column("storage_location", sa.String(255), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("initial_quantity > 0", name="ck_stock_records_initial_positive"),
        sa.CheckConstraint("remaining_quantity >= 0", name="ck_stock_records_remaining_non_negative"),
        sa.CheckConstraint(
            "remaining_quantity <= initial_quantity",
            name="ck_stock_records_remaining_within_initial",
        ),
    )
    op.create_index("ix_stock_records_status", "stock_records", ["status"])

    op.create_table(
        "withdrawals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("stock_record_id", sa.String(36), sa.ForeignKey("stock_records.id"), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("recipient_type", sa.String(30), nullable=True),
        sa.Column("distributed_by", sa.String(36), nullable=True),
        sa.Column("destination", sa.String(255), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_withdrawals_quantity_positive"),
    )
    op.create_index("ix_withdrawals_stock_record_id", "withdrawals", ["stock_record_id"])
    op.create_index("ix_withdrawals_created_at", "withdrawals", ["created_at"])

    # ── Per-unit delivery pipeline ───────────────────────────
    op.create_table(
        "unit_deliveries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "source_withdrawal_id", sa.String(36), sa.ForeignKey("withdrawals.id"),
            nullable=False, unique=True,
        ),
        sa.Column("buyer_id", sa.String(36), nullable=True),
        sa.Column("state", sa.String(20), nullable=False, server_default="in_transit"),
        sa.Column("payment_state", sa.String(10), nullable=False, server_default="unpaid"),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_unit_deliveries_buyer_id", "unit_deliveries", ["buyer_id"])
    op.create_index("ix_unit_deliveries_state", "unit_deliveries", ["state"])


def downgrade() -> None:
    op.drop_table("unit_deliveries")
    op.drop_table("withdrawals")
    op.drop_table("stock_records")
    op.drop_table("child_allocations")
    op.drop_table("root_allocations")
    op.drop_table("harvest_batches")
