"""Purchase ledger, charity donations and monthly reports."""
from __future__ import annotations

from collections.abc import Iterable

import sqlalchemy as sa
from alembic import op

revision = "20251108_01"
down_revision = None
branch_labels = None
depends_on: Iterable[str] | None = None


def upgrade() -> None:  # noqa: D401
    """Create the purchase ledger tables and their uniqueness constraints."""

    purchase_status = sa.Enum("pending_validation", "completed", "failed", name="purchase_status")

    op.create_table(
        "charities",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("charity_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=128), nullable=False),
        sa.Column("apple_transaction_id", sa.String(length=64)),
        sa.Column("receipt_data", sa.Text()),
        sa.Column("transaction_jws", sa.Text()),
        sa.Column("status", purchase_status, nullable=False, server_default="pending_validation"),
        sa.Column("gross_cents", sa.Integer(), nullable=False),
        sa.Column("apple_fee_cents", sa.Integer(), nullable=False),
        sa.Column("net_cents", sa.Integer(), nullable=False),
        sa.Column("donation_cents", sa.Integer(), nullable=False),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.ForeignKeyConstraint(["charity_id"], ["charities.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("apple_transaction_id", name="uq_purchases_apple_transaction_id"),
        sa.CheckConstraint("apple_fee_cents + net_cents = gross_cents", name="ck_purchases_fee_net_sum"),
        sa.CheckConstraint("donation_cents <= net_cents", name="ck_purchases_donation_within_net"),
    )
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_status_completed_at", "purchases", ["status", "completed_at"])

    op.create_table(
        "charity_donations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("charity_id", sa.String(length=64), nullable=False),
        sa.Column("purchase_id", sa.String(length=36), nullable=False),
        sa.Column("donation_cents", sa.Integer(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["charity_id"], ["charities.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("purchase_id", name="uq_charity_donations_purchase_id"),
    )
    op.create_index("ix_charity_donations_charity_id", "charity_donations", ["charity_id"])

    op.create_table(
        "monthly_reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("month", name="uq_monthly_reports_month"),
    )


def downgrade() -> None:  # noqa: D401
    """Drop the purchase ledger tables."""

    op.drop_table("monthly_reports")
    op.drop_index("ix_charity_donations_charity_id", table_name="charity_donations")
    op.drop_table("charity_donations")
    op.drop_index("ix_purchases_status_completed_at", table_name="purchases")
    op.drop_index("ix_purchases_user_id", table_name="purchases")
    op.drop_table("purchases")
    op.drop_table("charities")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute(sa.text("DROP TYPE IF EXISTS purchase_status"))
