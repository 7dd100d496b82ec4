"""Job order (contract offer) endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth import AuthenticatedUser, current_user, require_role
from marketplace.database import get_db
from marketplace.dependencies import get_contract_service
from marketplace.errors import NotFoundError
from marketplace.models.user import UserRole
from marketplace.schemas.job_order import CreateJobOrder, JobOrderResponse, UpdateJobOrderStatus
from marketplace.services.contract import ContractService

router = APIRouter(prefix="/job-orders", tags=["job-orders"])


@router.post("", response_model=JobOrderResponse, status_code=201)
async def create_job_order(
    data: CreateJobOrder,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER)),
    db: AsyncSession = Depends(get_db),
    contracts: ContractService = Depends(get_contract_service),
) -> JobOrderResponse:
    """Organizer offers a contract for a job."""
    order = await contracts.create_job_order(db, data, auth.user_id)
    return JobOrderResponse.model_validate(order)


@router.get("/{order_id}", response_model=JobOrderResponse)
async def get_job_order(
    order_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    contracts: ContractService = Depends(get_contract_service),
) -> JobOrderResponse:
    order = await contracts.get_job_order_by_id(db, order_id)
    if order is None:
        raise NotFoundError("JOB_ORDER_NOT_FOUND", "Job order not found")
    return JobOrderResponse.model_validate(order)


@router.patch("/{order_id}", response_model=JobOrderResponse)
async def update_job_order_status(
    order_id: uuid.UUID,
    data: UpdateJobOrderStatus,
    auth: AuthenticatedUser = Depends(require_role(UserRole.NURSE)),
    db: AsyncSession = Depends(get_db),
    contracts: ContractService = Depends(get_contract_service),
) -> JobOrderResponse:
    """Nurse accepts or rejects (with a reason) a job order."""
    order = await contracts.update_job_order_status(db, order_id, data, auth.user_id)
    return JobOrderResponse.model_validate(order)
