"""Job status store and the minimal job lifecycle the contract flow builds on."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import BusinessLogicError, NotFoundError
from marketplace.models.job import Job, JobStatus
from marketplace.schemas.job import JobCreate
from marketplace.services.audit import AuditSink, record_action

logger = logging.getLogger(__name__)


class JobStore:
    """Reads and writes job status inside the caller's session.

    ``update_status`` only flushes; the caller commits, so the status change
    lands in the same transaction as the escrow or job order write.
    """

    async def get_job(
        self, db: AsyncSession, job_id: uuid.UUID, *, for_update: bool = False
    ) -> Job | None:
        query = select(Job).where(Job.job_id == job_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def update_status(self, db: AsyncSession, job_id: uuid.UUID, status: JobStatus) -> None:
        job = await self.get_job(db, job_id)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found")
        previous = job.status
        job.status = status
        await db.flush()
        logger.info("Job %s status %s -> %s", job_id, previous.value, status.value)


async def _get_job(db: AsyncSession, jobs: JobStore, job_id: uuid.UUID) -> Job:
    job = await jobs.get_job(db, job_id)
    if job is None:
        raise NotFoundError("JOB_NOT_FOUND", "Job not found")
    return job


async def create_job(
    db: AsyncSession,
    audit: AuditSink,
    organizer_id: uuid.UUID,
    data: JobCreate,
) -> Job:
    """Organizer posts a job. Draft unless published immediately."""
    status = JobStatus.OPEN if data.publish else JobStatus.DRAFT
    job = Job(
        job_id=uuid.uuid4(),
        organizer_id=organizer_id,
        title=data.title,
        description=data.description,
        status=status,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    await record_action(
        audit, organizer_id, "job_created", f"job:{job.job_id}",
        {"job_title": job.title, "status": status.value},
    )
    return job


async def publish_job(
    db: AsyncSession, jobs: JobStore, audit: AuditSink, job_id: uuid.UUID, actor_id: uuid.UUID
) -> Job:
    job = await _get_job(db, jobs, job_id)
    if job.organizer_id != actor_id:
        raise BusinessLogicError("NOT_JOB_ORGANIZER", "Only the organizer can publish this job", 403)
    if job.status != JobStatus.DRAFT:
        raise BusinessLogicError(
            "INVALID_JOB_STATUS", f"Only draft jobs can be published, currently {job.status.value}"
        )
    await jobs.update_status(db, job_id, JobStatus.OPEN)
    await db.commit()
    await db.refresh(job)

    await record_action(
        audit, actor_id, "job_updated", f"job:{job_id}",
        {"previous_status": JobStatus.DRAFT.value, "new_status": JobStatus.OPEN.value},
    )
    return job


async def mark_applied(
    db: AsyncSession, jobs: JobStore, audit: AuditSink, job_id: uuid.UUID, actor_id: uuid.UUID
) -> Job:
    """An application was accepted: the job moves from open to applied."""
    job = await _get_job(db, jobs, job_id)
    if job.status != JobStatus.OPEN:
        raise BusinessLogicError(
            "INVALID_JOB_STATUS", f"Only open jobs can take applications, currently {job.status.value}"
        )
    await jobs.update_status(db, job_id, JobStatus.APPLIED)
    await db.commit()
    await db.refresh(job)

    await record_action(
        audit, actor_id, "job_updated", f"job:{job_id}",
        {"previous_status": JobStatus.OPEN.value, "new_status": JobStatus.APPLIED.value},
    )
    return job


async def get_job(db: AsyncSession, jobs: JobStore, job_id: uuid.UUID) -> Job:
    return await _get_job(db, jobs, job_id)
