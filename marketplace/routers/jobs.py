"""Job endpoints and per-job escrow/contract lookups."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth import AuthenticatedUser, current_user, require_role
from marketplace.database import get_db
from marketplace.dependencies import get_audit_sink, get_contract_service, get_escrow_ledger, get_job_store
from marketplace.errors import NotFoundError
from marketplace.models.user import UserRole
from marketplace.schemas.escrow import EscrowDetails
from marketplace.schemas.job import JobCreate, JobResponse
from marketplace.schemas.job_order import JobOrderResponse
from marketplace.services import job as job_service
from marketplace.services.audit import AuditSink
from marketplace.services.contract import ContractService
from marketplace.services.escrow import EscrowLedger
from marketplace.services.job import JobStore

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(
    data: JobCreate,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER)),
    db: AsyncSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
) -> JobResponse:
    job = await job_service.create_job(db, audit, auth.user_id, data)
    return JobResponse.model_validate(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    jobs: JobStore = Depends(get_job_store),
) -> JobResponse:
    job = await job_service.get_job(db, jobs, job_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/publish", response_model=JobResponse)
async def publish_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER)),
    db: AsyncSession = Depends(get_db),
    jobs: JobStore = Depends(get_job_store),
    audit: AuditSink = Depends(get_audit_sink),
) -> JobResponse:
    """Draft → open."""
    job = await job_service.publish_job(db, jobs, audit, job_id, auth.user_id)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/applied", response_model=JobResponse)
async def mark_applied(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    jobs: JobStore = Depends(get_job_store),
    audit: AuditSink = Depends(get_audit_sink),
) -> JobResponse:
    """Open → applied, once an application has been accepted."""
    job = await job_service.mark_applied(db, jobs, audit, job_id, auth.user_id)
    return JobResponse.model_validate(job)


@router.get("/{job_id}/escrow", response_model=EscrowDetails)
async def get_job_escrow(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowDetails:
    details = await ledger.get_escrow_by_job_id(db, job_id)
    if details is None:
        raise NotFoundError("ESCROW_NOT_FOUND", "No escrow transaction exists for this job")
    return details


@router.get("/{job_id}/job-order", response_model=JobOrderResponse)
async def get_latest_job_order(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    contracts: ContractService = Depends(get_contract_service),
) -> JobOrderResponse:
    """Most recent job order for the job."""
    order = await contracts.get_job_order_by_job_id(db, job_id)
    if order is None:
        raise NotFoundError("JOB_ORDER_NOT_FOUND", "No job order exists for this job")
    return JobOrderResponse.model_validate(order)


@router.get("/{job_id}/job-orders", response_model=list[JobOrderResponse])
async def list_job_orders(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    contracts: ContractService = Depends(get_contract_service),
) -> list[JobOrderResponse]:
    orders = await contracts.get_job_orders_for_job(db, job_id)
    return [JobOrderResponse.model_validate(o) for o in orders]
