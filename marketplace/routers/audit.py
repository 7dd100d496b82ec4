"""Audit log query endpoint. Admin only."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from marketplace.auth import AuthenticatedUser, require_role
from marketplace.dependencies import get_audit_sink
from marketplace.models.user import UserRole
from marketplace.schemas.audit import AuditFilters, AuditLogEntry
from marketplace.services.audit import DatabaseAuditSink

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=list[AuditLogEntry])
async def list_audit_logs(
    actor_id: str | None = Query(None, max_length=64),
    action: str | None = Query(None, max_length=64),
    target: str | None = Query(None, max_length=128),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ADMIN)),
    audit: DatabaseAuditSink = Depends(get_audit_sink),
) -> list[AuditLogEntry]:
    """Newest first, at most ``audit_log_query_limit`` entries."""
    filters = AuditFilters(
        actor_id=actor_id, action=action, target=target,
        start_date=start_date, end_date=end_date,
    )
    return await audit.list_actions(filters)
