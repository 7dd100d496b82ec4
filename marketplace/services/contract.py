"""Job order (contract) workflow.

An organizer offers a job order (PENDING, job -> contracted). The nurse
accepts it (job -> escrow holding, which unlocks escrow creation) or rejects
it with a reason (job -> applied). Only one order per job can be accepted at
a time.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import BusinessLogicError, MarketplaceError, NotFoundError, SystemFailure
from marketplace.models.job import JobStatus
from marketplace.models.job_order import JobOrder, OrderStatus
from marketplace.schemas.job_order import CreateJobOrder, UpdateJobOrderStatus
from marketplace.services.audit import AuditSink, record_action
from marketplace.services.job import JobStore

logger = logging.getLogger(__name__)

# Job status each order decision moves the job to
_JOB_STATUS_ON_DECISION: dict[OrderStatus, JobStatus] = {
    OrderStatus.ACCEPTED: JobStatus.ESCROW_HOLDING,
    OrderStatus.REJECTED: JobStatus.APPLIED,
}


def _order_target(order_id: uuid.UUID) -> str:
    return f"job_order:{order_id}"


class ContractService:
    def __init__(self, jobs: JobStore, audit: AuditSink) -> None:
        self.jobs = jobs
        self.audit = audit

    async def create_job_order(
        self, db: AsyncSession, data: CreateJobOrder, actor_id: uuid.UUID
    ) -> JobOrder:
        """Organizer offers a contract for a job. Atomic: order + job -> contracted."""
        job = await self.jobs.get_job(db, data.job_id, for_update=True)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found")

        order = JobOrder(
            order_id=uuid.uuid4(),
            job_id=data.job_id,
            template_type=data.template_type,
            custom_document_url=str(data.custom_document_url) if data.custom_document_url else None,
            terms=data.terms.model_dump(mode="json"),
            status=OrderStatus.PENDING,
        )
        try:
            db.add(order)
            await db.flush()
            await self.jobs.update_status(db, data.job_id, JobStatus.CONTRACTED)
            await db.commit()
        except MarketplaceError:
            await db.rollback()
            raise
        except Exception as exc:
            await db.rollback()
            logger.exception("Job order creation for job %s rolled back", data.job_id)
            raise SystemFailure("JOB_ORDER_CREATION_FAILED", "Failed to create job order") from exc

        await db.refresh(order)
        logger.info("Job order %s offered for job %s", order.order_id, data.job_id)

        await record_action(
            self.audit, actor_id, "CREATE_JOB_ORDER", _order_target(order.order_id),
            {
                "job_id": str(data.job_id),
                "template_type": data.template_type,
                "has_custom_document": data.custom_document_url is not None,
            },
        )
        return order

    async def _find_accepted_sibling(
        self, db: AsyncSession, job_id: uuid.UUID, order_id: uuid.UUID
    ) -> uuid.UUID | None:
        result = await db.execute(
            select(JobOrder.order_id).where(
                JobOrder.job_id == job_id,
                JobOrder.status == OrderStatus.ACCEPTED,
                JobOrder.order_id != order_id,
            )
        )
        return result.scalars().first()

    async def update_job_order_status(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        data: UpdateJobOrderStatus,
        actor_id: uuid.UUID,
    ) -> JobOrder:
        """Nurse accepts or rejects an offer.

        Re-deciding an order that was already accepted or rejected is allowed;
        accepting while a different order of the same job is accepted is not.
        Decisions on one job are serialised on the job row, and the
        uq_job_orders_one_accepted index rejects whatever still slips through.
        """
        result = await db.execute(
            select(JobOrder).where(JobOrder.order_id == order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("JOB_ORDER_NOT_FOUND", "Job order not found")

        job_id = order.job_id
        await self.jobs.get_job(db, job_id, for_update=True)

        if data.status == OrderStatus.ACCEPTED:
            if await self._find_accepted_sibling(db, job_id, order_id) is not None:
                raise BusinessLogicError(
                    "ORDER_ALREADY_ACCEPTED", "Another job order for this job has already been accepted"
                )

        previous = order.status
        job_status = _JOB_STATUS_ON_DECISION.get(data.status)
        try:
            order.status = data.status
            if data.status == OrderStatus.ACCEPTED:
                order.accepted_at = datetime.now(UTC)
            else:
                order.accepted_at = None
            order.rejection_reason = (
                data.rejection_reason if data.status == OrderStatus.REJECTED else None
            )
            await db.flush()
            if job_status is not None:
                await self.jobs.update_status(db, job_id, job_status)
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            logger.info("Concurrent acceptance for job %s lost the race", job_id)
            raise BusinessLogicError(
                "ORDER_ALREADY_ACCEPTED", "Another job order for this job has already been accepted"
            ) from exc
        except MarketplaceError:
            await db.rollback()
            raise
        except Exception as exc:
            await db.rollback()
            logger.exception("Job order %s update rolled back", order_id)
            raise SystemFailure("JOB_ORDER_UPDATE_FAILED", "Failed to update job order") from exc

        await db.refresh(order)
        if previous in (OrderStatus.ACCEPTED, OrderStatus.REJECTED):
            logger.warning("Job order %s re-decided: %s -> %s", order_id, previous.value, data.status.value)
        else:
            logger.info("Job order %s %s", order_id, data.status.value)

        await record_action(
            self.audit, actor_id, "UPDATE_JOB_ORDER_STATUS", _order_target(order_id),
            {
                "new_status": data.status.value,
                "rejection_reason": data.rejection_reason,
            },
        )
        return order

    async def get_job_order_by_job_id(self, db: AsyncSession, job_id: uuid.UUID) -> JobOrder | None:
        """Most recent order for the job."""
        result = await db.execute(
            select(JobOrder)
            .where(JobOrder.job_id == job_id)
            .order_by(JobOrder.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_job_order_by_id(self, db: AsyncSession, order_id: uuid.UUID) -> JobOrder | None:
        result = await db.execute(select(JobOrder).where(JobOrder.order_id == order_id))
        return result.scalar_one_or_none()

    async def get_job_orders_for_job(self, db: AsyncSession, job_id: uuid.UUID) -> list[JobOrder]:
        result = await db.execute(
            select(JobOrder)
            .where(JobOrder.job_id == job_id)
            .order_by(JobOrder.created_at.desc())
        )
        return list(result.scalars().all())
