"""Audit sink: append-only record of every state-changing action."""

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.models.audit import AuditLog
from marketplace.schemas.audit import AuditAction, AuditFilters, AuditLogEntry

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def log_action(self, action: AuditAction) -> AuditLogEntry: ...


class DatabaseAuditSink:
    """Writes each entry in its own session.

    Entries are appended after the caller's transaction has committed, so an
    audit failure can never roll back the state change it describes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_limit: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._query_limit = query_limit

    async def log_action(self, action: AuditAction) -> AuditLogEntry:
        async with self._session_factory() as db:
            entry = AuditLog(
                actor_id=action.actor_id,
                action=action.action,
                target=action.target,
                metadata_=action.metadata,
            )
            db.add(entry)
            await db.commit()
            await db.refresh(entry)
            return AuditLogEntry.model_validate(entry)

    async def list_actions(self, filters: AuditFilters | None = None) -> list[AuditLogEntry]:
        """Newest first, capped at the configured query limit."""
        filters = filters or AuditFilters()
        query = select(AuditLog)
        if filters.actor_id:
            query = query.where(AuditLog.actor_id == filters.actor_id)
        if filters.action:
            query = query.where(AuditLog.action == filters.action)
        if filters.target:
            query = query.where(AuditLog.target.contains(filters.target, autoescape=True))
        if filters.start_date:
            query = query.where(AuditLog.created_at >= filters.start_date)
        if filters.end_date:
            query = query.where(AuditLog.created_at <= filters.end_date)
        query = query.order_by(AuditLog.created_at.desc()).limit(self._query_limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            return [AuditLogEntry.model_validate(row) for row in result.scalars().all()]


async def record_action(
    sink: AuditSink,
    actor_id: object,
    action: str,
    target: str,
    metadata: dict,
) -> AuditLogEntry | None:
    """Append to the audit log after commit. Failures are logged, never raised."""
    try:
        return await sink.log_action(
            AuditAction(actor_id=str(actor_id), action=action, target=target, metadata=metadata)
        )
    except Exception:
        logger.exception("Audit write failed: %s on %s by %s", action, target, actor_id)
        return None
