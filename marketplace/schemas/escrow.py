"""Pydantic v2 schemas for Escrow and fee endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


_MAX_AMOUNT = Decimal("100000000")


class CreateEscrow(BaseModel):
    """Organizer opens escrow for a job whose order was accepted.

    ``platform_fee`` may be omitted, in which case the platform fee rule of
    the current fee schedule is applied to ``amount``.
    """
    job_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    platform_fee: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v > _MAX_AMOUNT:
            raise ValueError("Maximum escrow amount is 100,000,000")
        return v


class ReleaseEscrow(BaseModel):
    release_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1024)


class RefundEscrow(BaseModel):
    refund_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1024)


class PartySummary(BaseModel):
    user_id: uuid.UUID
    name: str


class EscrowJobSummary(BaseModel):
    job_id: uuid.UUID
    title: str
    organizer: PartySummary


class EscrowDetails(BaseModel):
    """Escrow record joined with its job title and payer name, for display."""
    model_config = ConfigDict(from_attributes=True)

    escrow_id: uuid.UUID
    job_id: uuid.UUID
    amount: Decimal
    platform_fee: Decimal
    status: str
    gateway_transaction_id: str | None = None
    created_at: datetime
    released_at: datetime | None = None
    refunded_at: datetime | None = None
    job: EscrowJobSummary

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class PaymentResult(BaseModel):
    success: bool
    transaction_id: str
