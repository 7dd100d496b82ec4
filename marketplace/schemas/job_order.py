"""Pydantic v2 schemas for job orders (contract offers)."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from marketplace.models.job_order import OrderStatus


class Compensation(BaseModel):
    type: Literal["hourly", "fixed"]
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: Literal["JPY"] = "JPY"


class ContractTerms(BaseModel):
    """Structured contract terms. Stored as a nested JSON document."""
    start_date: datetime
    end_date: datetime
    location: str = Field(..., min_length=1, max_length=512)
    compensation: Compensation
    responsibilities: list[str] = Field(..., min_length=1, max_length=50)
    cancellation_policy: str = Field(..., min_length=1, max_length=4096)
    special_requirements: list[str] | None = Field(None, max_length=50)

    @field_validator("location", "cancellation_policy")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Must not be blank")
        return v

    @field_validator("responsibilities")
    @classmethod
    def validate_responsibilities(cls, v: list[str]) -> list[str]:
        for item in v:
            if not item.strip():
                raise ValueError("Responsibilities must not contain blank entries")
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "ContractTerms":
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class CreateJobOrder(BaseModel):
    """Organizer offers a contract: a named template or an uploaded document, never both."""
    job_id: uuid.UUID
    template_type: str | None = Field(None, min_length=1, max_length=128)
    custom_document_url: HttpUrl | None = None
    terms: ContractTerms

    @model_validator(mode="after")
    def exactly_one_document_source(self) -> "CreateJobOrder":
        if (self.template_type is None) == (self.custom_document_url is None):
            raise ValueError("Exactly one of template_type or custom_document_url is required")
        return self


class UpdateJobOrderStatus(BaseModel):
    status: OrderStatus
    rejection_reason: str | None = Field(None, max_length=2048)

    @model_validator(mode="after")
    def reason_required_for_rejection(self) -> "UpdateJobOrderStatus":
        if self.status == OrderStatus.REJECTED and not (self.rejection_reason or "").strip():
            raise ValueError("Rejection reason is required when rejecting an order")
        return self


class JobOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: uuid.UUID
    job_id: uuid.UUID
    template_type: str | None
    custom_document_url: str | None
    terms: ContractTerms
    status: str
    rejection_reason: str | None = None
    created_at: datetime
    accepted_at: datetime | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
