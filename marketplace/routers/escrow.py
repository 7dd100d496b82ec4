"""Escrow endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth import AuthenticatedUser, current_user, require_role
from marketplace.database import get_db
from marketplace.dependencies import get_escrow_ledger
from marketplace.errors import NotFoundError
from marketplace.models.user import UserRole
from marketplace.schemas.escrow import (
    CreateEscrow,
    EscrowDetails,
    PaymentResult,
    RefundEscrow,
    ReleaseEscrow,
)
from marketplace.services.escrow import EscrowLedger

router = APIRouter(prefix="/escrow", tags=["escrow"])


async def _details_or_404(db: AsyncSession, ledger: EscrowLedger, escrow_id: uuid.UUID) -> EscrowDetails:
    details = await ledger.get_escrow_details(db, escrow_id)
    if details is None:
        raise NotFoundError("ESCROW_NOT_FOUND", "Escrow transaction not found")
    return details


@router.post("", response_model=EscrowDetails, status_code=201)
async def create_escrow(
    data: CreateEscrow,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER)),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowDetails:
    """Organizer opens escrow for a job with an accepted job order."""
    return await ledger.create_escrow(db, data.job_id, data.amount, data.platform_fee, auth.user_id)


@router.get("/{escrow_id}", response_model=EscrowDetails)
async def get_escrow(
    escrow_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(current_user),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowDetails:
    return await _details_or_404(db, ledger, escrow_id)


@router.post("/{escrow_id}/process", response_model=PaymentResult)
async def process_payment(
    escrow_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ORGANIZER)),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> PaymentResult:
    """Charge the organizer; funds are then held in escrow."""
    return await ledger.process_payment(db, escrow_id, auth.user_id)


@router.post("/{escrow_id}/release", response_model=EscrowDetails)
async def release_escrow(
    escrow_id: uuid.UUID,
    data: ReleaseEscrow,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowDetails:
    """Release held funds to the nurse. Admin only."""
    await ledger.release_escrow(db, escrow_id, data.release_amount, data.reason, auth.user_id)
    return await _details_or_404(db, ledger, escrow_id)


@router.post("/{escrow_id}/refund", response_model=EscrowDetails)
async def refund_escrow(
    escrow_id: uuid.UUID,
    data: RefundEscrow,
    auth: AuthenticatedUser = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    ledger: EscrowLedger = Depends(get_escrow_ledger),
) -> EscrowDetails:
    """Refund held funds to the organizer and cancel the job. Admin only."""
    await ledger.refund_escrow(db, escrow_id, data.refund_amount, data.reason, auth.user_id)
    return await _details_or_404(db, ledger, escrow_id)
