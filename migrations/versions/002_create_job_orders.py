"""Create job_orders table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_orders",
        sa.Column("order_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("template_type", sa.String(128), nullable=True),
        sa.Column("custom_document_url", sa.String(2048), nullable=True),
        sa.Column("terms", JSONB, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "rejected", "cancelled", name="orderstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_job_orders_job_id", "job_orders", ["job_id"])
    op.create_index(
        "uq_job_orders_one_accepted",
        "job_orders",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
    )


def downgrade() -> None:
    op.drop_index("uq_job_orders_one_accepted", table_name="job_orders")
    op.drop_table("job_orders")
    op.execute("DROP TYPE IF EXISTS orderstatus")
