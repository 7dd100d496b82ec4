"""Tests for the job order (contract) workflow and its request validation."""

import asyncio
import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.errors import BusinessLogicError, NotFoundError, SystemFailure
from marketplace.models.job import JobStatus
from marketplace.models.job_order import JobOrder, OrderStatus
from marketplace.models.user import UserRole
from marketplace.schemas.job_order import CreateJobOrder, UpdateJobOrderStatus
from marketplace.services.contract import ContractService
from marketplace.services.job import JobStore
from tests.conftest import RecordingAuditSink, make_job, make_job_order_data, make_terms, make_user


class ExplodingJobStore(JobStore):
    async def update_status(self, db, job_id, status):  # type: ignore[no-untyped-def]
        raise RuntimeError("job store unavailable")


async def _job_status(db: AsyncSession, job_id: uuid.UUID) -> JobStatus:
    job = await JobStore().get_job(db, job_id)
    return job.status


async def _offer(db: AsyncSession, contracts: ContractService, job_id: uuid.UUID) -> JobOrder:
    data = CreateJobOrder.model_validate(make_job_order_data(job_id))
    return await contracts.create_job_order(db, data, uuid.uuid4())


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------

def test_job_order_requires_a_document_source() -> None:
    data = make_job_order_data(uuid.uuid4())
    del data["template_type"]
    with pytest.raises(ValidationError, match="Exactly one"):
        CreateJobOrder.model_validate(data)


def test_job_order_rejects_both_document_sources() -> None:
    data = make_job_order_data(uuid.uuid4(), custom_document_url="https://docs.example.com/contract.pdf")
    with pytest.raises(ValidationError, match="Exactly one"):
        CreateJobOrder.model_validate(data)


def test_job_order_custom_document_only() -> None:
    data = make_job_order_data(uuid.uuid4(), custom_document_url="https://docs.example.com/contract.pdf")
    del data["template_type"]
    order = CreateJobOrder.model_validate(data)
    assert order.template_type is None
    assert str(order.custom_document_url) == "https://docs.example.com/contract.pdf"


def test_contract_end_must_follow_start() -> None:
    terms = make_terms()
    terms["end_date"] = terms["start_date"]
    with pytest.raises(ValidationError, match="End date must be after start date"):
        CreateJobOrder.model_validate(make_job_order_data(uuid.uuid4(), terms=terms))


def test_contract_requires_responsibilities() -> None:
    with pytest.raises(ValidationError):
        CreateJobOrder.model_validate(make_job_order_data(uuid.uuid4(), terms=make_terms(responsibilities=[])))


def test_contract_rejects_blank_location() -> None:
    with pytest.raises(ValidationError):
        CreateJobOrder.model_validate(make_job_order_data(uuid.uuid4(), terms=make_terms(location="   ")))


def test_compensation_currency_is_jpy() -> None:
    terms = make_terms(compensation={"type": "fixed", "amount": "30000", "currency": "USD"})
    with pytest.raises(ValidationError):
        CreateJobOrder.model_validate(make_job_order_data(uuid.uuid4(), terms=terms))


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_requires_reason(reason: str | None) -> None:
    with pytest.raises(ValidationError, match="Rejection reason is required"):
        UpdateJobOrderStatus(status=OrderStatus.REJECTED, rejection_reason=reason)


def test_acceptance_needs_no_reason() -> None:
    assert UpdateJobOrderStatus(status=OrderStatus.ACCEPTED).rejection_reason is None


# ---------------------------------------------------------------------------
# create_job_order
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_job_order(
    db_session: AsyncSession, contracts: ContractService, audit_sink: RecordingAuditSink
) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)

    order = await contracts.create_job_order(
        db_session, CreateJobOrder.model_validate(make_job_order_data(job.job_id)), organizer.user_id
    )

    assert order.status == OrderStatus.PENDING
    assert order.accepted_at is None
    assert order.terms["compensation"]["type"] == "hourly"
    assert order.terms["responsibilities"] == ["Staff the first aid booth", "Triage minor injuries"]
    assert await _job_status(db_session, job.job_id) == JobStatus.CONTRACTED

    entry = audit_sink.entries[-1]
    assert entry.action == "CREATE_JOB_ORDER"
    assert entry.target == f"job_order:{order.order_id}"
    assert entry.metadata == {
        "job_id": str(job.job_id),
        "template_type": "standard_event",
        "has_custom_document": False,
    }


@pytest.mark.asyncio
async def test_create_job_order_job_not_found(db_session: AsyncSession, contracts: ContractService) -> None:
    data = CreateJobOrder.model_validate(make_job_order_data(uuid.uuid4()))
    with pytest.raises(NotFoundError) as exc_info:
        await contracts.create_job_order(db_session, data, uuid.uuid4())
    assert exc_info.value.code == "JOB_NOT_FOUND"


@pytest.mark.asyncio
async def test_create_job_order_is_atomic(db_session: AsyncSession, audit_sink: RecordingAuditSink) -> None:
    contracts = ContractService(ExplodingJobStore(), audit_sink)
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    job_id = job.job_id

    with pytest.raises(SystemFailure) as exc_info:
        await _offer(db_session, contracts, job_id)
    assert exc_info.value.code == "JOB_ORDER_CREATION_FAILED"

    assert await contracts.get_job_orders_for_job(db_session, job_id) == []
    assert await _job_status(db_session, job_id) == JobStatus.APPLIED
    assert audit_sink.entries == []


# ---------------------------------------------------------------------------
# update_job_order_status
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_accept_job_order_unlocks_escrow(
    db_session: AsyncSession, contracts: ContractService, audit_sink: RecordingAuditSink
) -> None:
    organizer = await make_user(db_session)
    nurse = await make_user(db_session, role=UserRole.NURSE)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    order = await _offer(db_session, contracts, job.job_id)

    updated = await contracts.update_job_order_status(
        db_session, order.order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), nurse.user_id
    )

    assert updated.status == OrderStatus.ACCEPTED
    assert updated.accepted_at is not None
    assert updated.rejection_reason is None
    assert await _job_status(db_session, job.job_id) == JobStatus.ESCROW_HOLDING

    entry = audit_sink.entries[-1]
    assert entry.action == "UPDATE_JOB_ORDER_STATUS"
    assert entry.actor_id == str(nurse.user_id)
    assert entry.metadata == {"new_status": "accepted", "rejection_reason": None}


@pytest.mark.asyncio
async def test_reject_job_order_returns_job_to_applied(
    db_session: AsyncSession, contracts: ContractService, audit_sink: RecordingAuditSink
) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    order = await _offer(db_session, contracts, job.job_id)

    updated = await contracts.update_job_order_status(
        db_session,
        order.order_id,
        UpdateJobOrderStatus(status=OrderStatus.REJECTED, rejection_reason="Dates conflict with another shift"),
        uuid.uuid4(),
    )

    assert updated.status == OrderStatus.REJECTED
    assert updated.accepted_at is None
    assert updated.rejection_reason == "Dates conflict with another shift"
    assert await _job_status(db_session, job.job_id) == JobStatus.APPLIED
    assert audit_sink.entries[-1].metadata["rejection_reason"] == "Dates conflict with another shift"


@pytest.mark.asyncio
async def test_update_job_order_not_found(db_session: AsyncSession, contracts: ContractService) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        await contracts.update_job_order_status(
            db_session, uuid.uuid4(), UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
        )
    assert exc_info.value.code == "JOB_ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_only_one_order_per_job_can_be_accepted(
    db_session: AsyncSession, contracts: ContractService
) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    first = await _offer(db_session, contracts, job.job_id)
    second = await _offer(db_session, contracts, job.job_id)

    await contracts.update_job_order_status(
        db_session, first.order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
    )
    with pytest.raises(BusinessLogicError) as exc_info:
        await contracts.update_job_order_status(
            db_session, second.order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
        )
    assert exc_info.value.code == "ORDER_ALREADY_ACCEPTED"


@pytest.mark.asyncio
async def test_accept_race_loser_gets_already_accepted(
    db_session: AsyncSession, contracts: ContractService, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Both callers pass the sibling check; the partial unique index settles it."""
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    job_id = job.job_id
    first_id = (await _offer(db_session, contracts, job_id)).order_id
    second_id = (await _offer(db_session, contracts, job_id)).order_id

    await contracts.update_job_order_status(
        db_session, first_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
    )

    async def no_accepted_sibling(db, job_id, order_id):  # type: ignore[no-untyped-def]
        return None

    monkeypatch.setattr(contracts, "_find_accepted_sibling", no_accepted_sibling)

    with pytest.raises(BusinessLogicError) as exc_info:
        await contracts.update_job_order_status(
            db_session, second_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
        )
    assert exc_info.value.code == "ORDER_ALREADY_ACCEPTED"

    statuses = dict((await db_session.execute(select(JobOrder.order_id, JobOrder.status))).all())
    assert statuses == {first_id: OrderStatus.ACCEPTED, second_id: OrderStatus.PENDING}
    assert await _job_status(db_session, job_id) == JobStatus.ESCROW_HOLDING


@pytest.mark.asyncio
async def test_concurrent_accepts_leave_one_accepted_order(
    db_session: AsyncSession,
    contracts: ContractService,
    audit_sink: RecordingAuditSink,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    job_id = job.job_id
    order_ids = [(await _offer(db_session, contracts, job_id)).order_id for _ in range(2)]

    async def accept(order_id: uuid.UUID) -> JobOrder:
        async with session_factory() as session:
            service = ContractService(JobStore(), audit_sink)
            return await service.update_job_order_status(
                session, order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
            )

    results = await asyncio.gather(*(accept(order_id) for order_id in order_ids), return_exceptions=True)

    accepted = [r for r in results if isinstance(r, JobOrder)]
    failed = [r for r in results if isinstance(r, BusinessLogicError)]
    assert len(accepted) == 1
    assert len(failed) == 1
    assert failed[0].code == "ORDER_ALREADY_ACCEPTED"

    async with session_factory() as session:
        count = await session.scalar(
            select(func.count())
            .select_from(JobOrder)
            .where(JobOrder.job_id == job_id, JobOrder.status == OrderStatus.ACCEPTED)
        )
        assert count == 1
        assert await _job_status(session, job_id) == JobStatus.ESCROW_HOLDING


@pytest.mark.asyncio
async def test_decided_order_can_be_decided_again(
    db_session: AsyncSession, contracts: ContractService
) -> None:
    """Re-deciding is allowed; the last decision wins and the job follows it."""
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    order = await _offer(db_session, contracts, job.job_id)

    await contracts.update_job_order_status(
        db_session,
        order.order_id,
        UpdateJobOrderStatus(status=OrderStatus.REJECTED, rejection_reason="Too far"),
        uuid.uuid4(),
    )
    updated = await contracts.update_job_order_status(
        db_session, order.order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
    )

    assert updated.status == OrderStatus.ACCEPTED
    assert updated.rejection_reason is None
    assert await _job_status(db_session, job.job_id) == JobStatus.ESCROW_HOLDING


@pytest.mark.asyncio
async def test_cancelling_an_order_leaves_job_status(
    db_session: AsyncSession, contracts: ContractService
) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    order = await _offer(db_session, contracts, job.job_id)

    updated = await contracts.update_job_order_status(
        db_session, order.order_id, UpdateJobOrderStatus(status=OrderStatus.CANCELLED), uuid.uuid4()
    )
    assert updated.status == OrderStatus.CANCELLED
    assert await _job_status(db_session, job.job_id) == JobStatus.CONTRACTED


@pytest.mark.asyncio
async def test_update_is_atomic(db_session: AsyncSession, audit_sink: RecordingAuditSink) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    order = await _offer(db_session, ContractService(JobStore(), audit_sink), job.job_id)
    order_id = order.order_id

    broken = ContractService(ExplodingJobStore(), audit_sink)
    with pytest.raises(SystemFailure) as exc_info:
        await broken.update_job_order_status(
            db_session, order_id, UpdateJobOrderStatus(status=OrderStatus.ACCEPTED), uuid.uuid4()
        )
    assert exc_info.value.code == "JOB_ORDER_UPDATE_FAILED"

    reloaded = await broken.get_job_order_by_id(db_session, order_id)
    assert reloaded.status == OrderStatus.PENDING
    assert reloaded.accepted_at is None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_job_order_reads(db_session: AsyncSession, contracts: ContractService) -> None:
    organizer = await make_user(db_session)
    job = await make_job(db_session, organizer, status=JobStatus.APPLIED)
    older = await _offer(db_session, contracts, job.job_id)
    newer = await _offer(db_session, contracts, job.job_id)

    # Pin creation times so ordering does not depend on clock resolution
    await db_session.execute(
        update(JobOrder)
        .where(JobOrder.order_id == older.order_id)
        .values(created_at=newer.created_at - timedelta(minutes=5))
    )
    await db_session.commit()

    orders = await contracts.get_job_orders_for_job(db_session, job.job_id)
    assert [o.order_id for o in orders] == [newer.order_id, older.order_id]

    latest = await contracts.get_job_order_by_job_id(db_session, job.job_id)
    assert latest.order_id == newer.order_id

    assert (await contracts.get_job_order_by_id(db_session, older.order_id)).order_id == older.order_id
    assert await contracts.get_job_order_by_id(db_session, uuid.uuid4()) is None
    assert await contracts.get_job_order_by_job_id(db_session, uuid.uuid4()) is None
    assert await contracts.get_job_orders_for_job(db_session, uuid.uuid4()) == []
