"""Pydantic v2 schemas for audit log entries."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AuditAction(BaseModel):
    """A state-changing action to append to the audit log."""
    actor_id: str = Field(..., min_length=1, max_length=64)
    action: str = Field(..., min_length=1, max_length=64)
    target: str = Field(..., min_length=1, max_length=128)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    audit_id: uuid.UUID
    actor_id: str
    action: str
    target: str
    metadata: dict[str, Any] | None = Field(None, validation_alias=AliasChoices("metadata_", "metadata"))
    created_at: datetime


class AuditFilters(BaseModel):
    actor_id: str | None = None
    action: str | None = None
    target: str | None = None  # substring match
    start_date: datetime | None = None
    end_date: datetime | None = None
