"""Create escrow_transactions table.

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "escrow_transactions",
        sa.Column("escrow_id", sa.Uuid(), primary_key=True),
        # unique: at most one escrow per job, enforced by the database
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("awaiting", "holding", "released", "refunded", name="escrowstatus"),
            nullable=False,
            server_default="awaiting",
        ),
        sa.Column("gateway_transaction_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        sa.CheckConstraint("platform_fee >= 0", name="ck_escrow_platform_fee_non_negative"),
    )


def downgrade() -> None:
    op.drop_table("escrow_transactions")
    op.execute("DROP TYPE IF EXISTS escrowstatus")
