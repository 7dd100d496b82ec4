"""Escrow transaction model."""

import enum
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base


class EscrowStatus(enum.Enum):
    AWAITING = "awaiting"
    HOLDING = "holding"
    RELEASED = "released"
    REFUNDED = "refunded"


TERMINAL_ESCROW_STATUSES = frozenset({EscrowStatus.RELEASED, EscrowStatus.REFUNDED})


class EscrowTransaction(Base):
    """One per job. Rows are never deleted; cancellation is REFUNDED."""
    __tablename__ = "escrow_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        CheckConstraint("platform_fee >= 0", name="ck_escrow_platform_fee_non_negative"),
    )

    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[EscrowStatus] = mapped_column(
        Enum(EscrowStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=EscrowStatus.AWAITING,
    )
    gateway_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    job = relationship("Job", foreign_keys=[job_id], lazy="selectin")
