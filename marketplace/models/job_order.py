"""Job order (contract offer) model."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, JSONDocument


class OrderStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class JobOrder(Base):
    """At most one ACCEPTED order per job, enforced by a partial unique index."""
    __tablename__ = "job_orders"
    __table_args__ = (
        Index(
            "uq_job_orders_one_accepted",
            "job_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    template_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    custom_document_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    # Nested ContractTerms document, see marketplace.schemas.job_order.ContractTerms
    terms: Mapped[dict] = mapped_column(JSONDocument, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
