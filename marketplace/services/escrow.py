"""Escrow ledger: open, charge, release and refund escrow with row-level locking.

State machine::

    AWAITING --process_payment--> HOLDING --release_escrow--> RELEASED
                                          --refund_escrow-->  REFUNDED

RELEASED and REFUNDED are terminal. Every precondition is checked before the
first write; the escrow write and the job status write share one commit.
Audit entries are appended after the commit.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_UP, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.errors import (
    BusinessLogicError,
    ExternalServiceError,
    MarketplaceError,
    NotFoundError,
    SystemFailure,
)
from marketplace.models.escrow import TERMINAL_ESCROW_STATUSES, EscrowStatus, EscrowTransaction
from marketplace.models.job import Job, JobStatus
from marketplace.schemas.escrow import EscrowDetails, EscrowJobSummary, PartySummary, PaymentResult
from marketplace.services.audit import AuditSink, record_action
from marketplace.services.fees import FeeCalculator
from marketplace.services.gateway import PaymentGateway, PaymentGatewayError
from marketplace.services.job import JobStore

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")
UNNAMED = "Unnamed"


@dataclass(frozen=True)
class _Settlement:
    """How a HOLDING escrow is closed out."""
    escrow_status: EscrowStatus
    job_status: JobStatus
    verb: str
    action: str
    amount_key: str
    amount_code: str
    failure_code: str


_RELEASE = _Settlement(
    escrow_status=EscrowStatus.RELEASED,
    job_status=JobStatus.PAID,
    verb="release",
    action="ESCROW_RELEASED",
    amount_key="release_amount",
    amount_code="INVALID_RELEASE_AMOUNT",
    failure_code="ESCROW_RELEASE_FAILED",
)
_REFUND = _Settlement(
    escrow_status=EscrowStatus.REFUNDED,
    job_status=JobStatus.CANCELLED,
    verb="refund",
    action="ESCROW_REFUNDED",
    amount_key="refund_amount",
    amount_code="INVALID_REFUND_AMOUNT",
    failure_code="ESCROW_REFUND_FAILED",
)


def _escrow_target(escrow_id: uuid.UUID) -> str:
    return f"escrow:{escrow_id}"


def _to_details(escrow: EscrowTransaction, job: Job) -> EscrowDetails:
    organizer = job.organizer
    return EscrowDetails(
        escrow_id=escrow.escrow_id,
        job_id=escrow.job_id,
        amount=escrow.amount,
        platform_fee=escrow.platform_fee,
        status=escrow.status,
        gateway_transaction_id=escrow.gateway_transaction_id,
        created_at=escrow.created_at,
        released_at=escrow.released_at,
        refunded_at=escrow.refunded_at,
        job=EscrowJobSummary(
            job_id=job.job_id,
            title=job.title,
            organizer=PartySummary(
                user_id=job.organizer_id,
                name=(organizer.display_name if organizer is not None else None) or UNNAMED,
            ),
        ),
    )


class EscrowLedger:
    def __init__(
        self,
        fees: FeeCalculator,
        jobs: JobStore,
        gateway: PaymentGateway,
        audit: AuditSink,
        fundable_status: JobStatus = JobStatus.ESCROW_HOLDING,
    ) -> None:
        self.fees = fees
        self.jobs = jobs
        self.gateway = gateway
        self.audit = audit
        self.fundable_status = fundable_status

    async def _find_escrow_for_job(
        self, db: AsyncSession, job_id: uuid.UUID
    ) -> EscrowTransaction | None:
        result = await db.execute(
            select(EscrowTransaction).where(EscrowTransaction.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def _lock_escrow(self, db: AsyncSession, escrow_id: uuid.UUID) -> EscrowTransaction:
        result = await db.execute(
            select(EscrowTransaction)
            .where(EscrowTransaction.escrow_id == escrow_id)
            .with_for_update()
        )
        escrow = result.scalar_one_or_none()
        if escrow is None:
            raise NotFoundError("ESCROW_NOT_FOUND", "Escrow transaction not found")
        return escrow

    async def create_escrow(
        self,
        db: AsyncSession,
        job_id: uuid.UUID,
        amount: Decimal,
        platform_fee: Decimal | None,
        actor_id: uuid.UUID,
    ) -> EscrowDetails:
        """Open escrow for a job whose contract was accepted.

        Atomic: insert the AWAITING escrow + set the job to escrow holding.
        The unique constraint on job_id settles concurrent attempts.
        """
        job = await self.jobs.get_job(db, job_id, for_update=True)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found")

        if await self._find_escrow_for_job(db, job_id) is not None:
            raise BusinessLogicError("ESCROW_ALREADY_EXISTS", "An escrow transaction already exists for this job")

        if job.status != self.fundable_status:
            raise BusinessLogicError(
                "INVALID_JOB_STATUS",
                f"Escrow can only be created for jobs in {self.fundable_status.value} status, "
                f"currently {job.status.value}",
            )

        if amount <= 0:
            raise BusinessLogicError("INVALID_ESCROW_AMOUNT", "Escrow amount must be positive")
        if platform_fee is None:
            platform_fee = self.fees.platform_fee(amount).quantize(_CENT, rounding=ROUND_UP)
        if platform_fee < 0:
            raise BusinessLogicError("INVALID_PLATFORM_FEE", "Platform fee must not be negative")

        escrow = EscrowTransaction(
            escrow_id=uuid.uuid4(),
            job_id=job_id,
            amount=amount,
            platform_fee=platform_fee,
            status=EscrowStatus.AWAITING,
        )
        try:
            db.add(escrow)
            await db.flush()
            await self.jobs.update_status(db, job_id, JobStatus.ESCROW_HOLDING)
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            logger.info("Concurrent escrow creation for job %s lost the race", job_id)
            raise BusinessLogicError(
                "ESCROW_ALREADY_EXISTS", "An escrow transaction already exists for this job"
            ) from exc
        except MarketplaceError:
            await db.rollback()
            raise
        except Exception as exc:
            await db.rollback()
            logger.exception("Escrow creation for job %s rolled back", job_id)
            raise SystemFailure("ESCROW_CREATION_FAILED", "Failed to create escrow transaction") from exc

        await db.refresh(escrow)
        logger.info("Escrow %s created for job %s (%s)", escrow.escrow_id, job_id, amount)

        await record_action(
            self.audit, actor_id, "ESCROW_CREATED", _escrow_target(escrow.escrow_id),
            {
                "job_id": str(job_id),
                "amount": str(amount),
                "platform_fee": str(platform_fee),
                "status": EscrowStatus.AWAITING.value,
            },
        )
        return _to_details(escrow, job)

    async def process_payment(
        self, db: AsyncSession, escrow_id: uuid.UUID, actor_id: uuid.UUID
    ) -> PaymentResult:
        """Charge the payer through the gateway and move the escrow to HOLDING.

        A gateway failure leaves the escrow AWAITING, so the call can be retried.
        """
        escrow = await self._lock_escrow(db, escrow_id)
        if escrow.status in TERMINAL_ESCROW_STATUSES:
            raise BusinessLogicError(
                "INVALID_ESCROW_STATUS", f"This escrow transaction is already {escrow.status.value}"
            )
        if escrow.status != EscrowStatus.AWAITING:
            raise BusinessLogicError("INVALID_ESCROW_STATUS", "This escrow transaction has already been processed")

        amount = escrow.amount
        try:
            charge = await self.gateway.charge(escrow_id, amount)
        except PaymentGatewayError as exc:
            await db.rollback()
            logger.exception("Gateway charge failed for escrow %s", escrow_id)
            raise ExternalServiceError("PAYMENT_PROCESSING_FAILED", "Payment processing failed") from exc

        if not charge.success or not charge.transaction_id:
            await db.rollback()
            logger.warning("Gateway declined escrow %s: %s", escrow_id, charge.error)
            raise ExternalServiceError(
                "PAYMENT_PROCESSING_FAILED",
                "Payment processing failed",
                details={"gateway_error": charge.error},
            )

        try:
            escrow.status = EscrowStatus.HOLDING
            escrow.gateway_transaction_id = charge.transaction_id
            await db.commit()
        except Exception as exc:
            await db.rollback()
            logger.exception(
                "Escrow %s charged as %s but the status write failed", escrow_id, charge.transaction_id
            )
            raise SystemFailure("PAYMENT_PROCESSING_FAILED", "Payment processing failed") from exc

        logger.info("Escrow %s holding funds (tx %s)", escrow_id, charge.transaction_id)
        await record_action(
            self.audit, actor_id, "PAYMENT_PROCESSED", _escrow_target(escrow_id),
            {
                "transaction_id": charge.transaction_id,
                "amount": str(amount),
                "status": EscrowStatus.HOLDING.value,
                "payment_method": getattr(self.gateway, "name", type(self.gateway).__name__),
            },
        )
        return PaymentResult(success=True, transaction_id=charge.transaction_id)

    async def _settle(
        self,
        db: AsyncSession,
        settlement: _Settlement,
        escrow_id: uuid.UUID,
        settle_amount: Decimal,
        reason: str,
        actor_id: uuid.UUID,
    ) -> None:
        escrow = await self._lock_escrow(db, escrow_id)
        if escrow.status in TERMINAL_ESCROW_STATUSES:
            raise BusinessLogicError(
                "INVALID_ESCROW_STATUS", f"This escrow transaction is already {escrow.status.value}"
            )
        if escrow.status != EscrowStatus.HOLDING:
            raise BusinessLogicError(
                "INVALID_ESCROW_STATUS",
                f"Escrow can only be {settlement.escrow_status.value} while holding funds, currently {escrow.status.value}",
            )
        if settle_amount <= 0 or settle_amount > escrow.amount:
            raise BusinessLogicError(
                settlement.amount_code,
                f"The {settlement.verb} amount must be positive and must not exceed the escrow amount",
            )

        job_id = escrow.job_id
        escrow_amount = escrow.amount
        try:
            now = datetime.now(UTC)
            escrow.status = settlement.escrow_status
            if settlement.escrow_status == EscrowStatus.RELEASED:
                escrow.released_at = now
            else:
                escrow.refunded_at = now
            await db.flush()
            await self.jobs.update_status(db, job_id, settlement.job_status)
            await db.commit()
        except MarketplaceError:
            await db.rollback()
            raise
        except Exception as exc:
            await db.rollback()
            logger.exception("Escrow %s %s rolled back", escrow_id, settlement.verb)
            raise SystemFailure(settlement.failure_code, f"Failed to {settlement.verb} escrow") from exc

        metadata = {
            settlement.amount_key: str(settle_amount),
            "reason": reason,
            "job_id": str(job_id),
        }
        if settle_amount < escrow_amount:
            # Partial amounts close the escrow; the remainder is only recorded.
            metadata["undisbursed_amount"] = str(escrow_amount - settle_amount)
            logger.warning(
                "Partial %s on escrow %s: %s of %s", settlement.verb, escrow_id, settle_amount, escrow_amount
            )
        logger.info("Escrow %s %s", escrow_id, settlement.escrow_status.value)
        await record_action(self.audit, actor_id, settlement.action, _escrow_target(escrow_id), metadata)

    async def release_escrow(
        self,
        db: AsyncSession,
        escrow_id: uuid.UUID,
        release_amount: Decimal,
        reason: str,
        actor_id: uuid.UUID,
    ) -> None:
        """Pay the held funds out to the nurse. Job becomes paid."""
        await self._settle(db, _RELEASE, escrow_id, release_amount, reason, actor_id)

    async def refund_escrow(
        self,
        db: AsyncSession,
        escrow_id: uuid.UUID,
        refund_amount: Decimal,
        reason: str,
        actor_id: uuid.UUID,
    ) -> None:
        """Return the held funds to the organizer. Job becomes cancelled."""
        await self._settle(db, _REFUND, escrow_id, refund_amount, reason, actor_id)

    async def _load_details(self, db: AsyncSession, *criteria) -> EscrowDetails | None:
        result = await db.execute(
            select(EscrowTransaction)
            .where(*criteria)
            .options(selectinload(EscrowTransaction.job).selectinload(Job.organizer))
            .execution_options(populate_existing=True)
        )
        escrow = result.scalar_one_or_none()
        if escrow is None:
            return None
        return _to_details(escrow, escrow.job)

    async def get_escrow_details(self, db: AsyncSession, escrow_id: uuid.UUID) -> EscrowDetails | None:
        return await self._load_details(db, EscrowTransaction.escrow_id == escrow_id)

    async def get_escrow_by_job_id(self, db: AsyncSession, job_id: uuid.UUID) -> EscrowDetails | None:
        return await self._load_details(db, EscrowTransaction.job_id == job_id)
