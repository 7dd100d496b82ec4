"""Test configuration and fixtures.

Each test gets its own SQLite database file (through aiosqlite, so the same
async SQLAlchemy code path as production). Tables are created from the
models; no Postgres is needed.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from marketplace.config import FeeConfig, settings
from marketplace.database import Base, get_db
from marketplace.dependencies import get_audit_sink, get_payment_gateway
from marketplace.main import app
from marketplace.models.audit import AuditLog  # noqa: F401  registers the table
from marketplace.models.escrow import EscrowTransaction  # noqa: F401
from marketplace.models.job import Job, JobStatus
from marketplace.models.job_order import JobOrder  # noqa: F401
from marketplace.models.user import User, UserRole
from marketplace.schemas.audit import AuditAction, AuditLogEntry
from marketplace.services.audit import DatabaseAuditSink
from marketplace.services.contract import ContractService
from marketplace.services.escrow import EscrowLedger
from marketplace.services.fees import FeeCalculator
from marketplace.services.gateway import ChargeResult, MockPaymentGateway
from marketplace.services.job import JobStore


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class RecordingAuditSink:
    """In-memory audit sink. Keeps entries in call order."""

    def __init__(self) -> None:
        self.entries: list[AuditLogEntry] = []

    async def log_action(self, action: AuditAction) -> AuditLogEntry:
        entry = AuditLogEntry(
            audit_id=uuid.uuid4(),
            actor_id=action.actor_id,
            action=action.action,
            target=action.target,
            metadata=action.metadata,
            created_at=datetime.now(UTC),
        )
        self.entries.append(entry)
        return entry

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


class FailingAuditSink:
    """Audit sink whose backing store is down."""

    def __init__(self) -> None:
        self.calls = 0

    async def log_action(self, action: AuditAction) -> AuditLogEntry:
        self.calls += 1
        raise ConnectionError("audit store unavailable")


class DecliningGateway:
    name = "declining"

    async def charge(self, escrow_id: uuid.UUID, amount: Decimal) -> ChargeResult:
        return ChargeResult(success=False, error="card_declined")


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def db_audit_sink(session_factory: async_sessionmaker[AsyncSession]) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory)


@pytest.fixture
def fees() -> FeeCalculator:
    return FeeCalculator(FeeConfig())


@pytest.fixture
def ledger(fees: FeeCalculator, audit_sink: RecordingAuditSink) -> EscrowLedger:
    return EscrowLedger(fees, JobStore(), MockPaymentGateway(), audit_sink)


@pytest.fixture
def contracts(audit_sink: RecordingAuditSink) -> ContractService:
    return ContractService(JobStore(), audit_sink)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with DB, audit and gateway dependencies pointed at the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_sink] = lambda: DatabaseAuditSink(session_factory)
    app.dependency_overrides[get_payment_gateway] = MockPaymentGateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def make_user(
    db: AsyncSession,
    role: UserRole = UserRole.ORGANIZER,
    display_name: str | None = "Test User",
) -> User:
    user = User(
        user_id=uuid.uuid4(),
        email=f"{uuid.uuid4().hex[:12]}@example.com",
        display_name=display_name,
        role=role,
    )
    db.add(user)
    await db.commit()
    return user


async def make_job(
    db: AsyncSession,
    organizer: User,
    status: JobStatus = JobStatus.OPEN,
    title: str = "Event medical staff",
) -> Job:
    job = Job(
        job_id=uuid.uuid4(),
        organizer_id=organizer.user_id,
        title=title,
        description="First aid station at the summer festival",
        status=status,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


def make_terms(**overrides: Any) -> dict:
    """Factory for a valid contract terms payload."""
    start = datetime(2026, 8, 1, 9, 0, tzinfo=UTC)
    terms = {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(hours=8)).isoformat(),
        "location": "Tokyo Big Sight, East Hall",
        "compensation": {"type": "hourly", "amount": "3500", "currency": "JPY"},
        "responsibilities": ["Staff the first aid booth", "Triage minor injuries"],
        "cancellation_policy": "Full pay if cancelled within 48 hours of start",
        "special_requirements": ["Registered nurse license"],
    }
    terms.update(overrides)
    return terms


def make_job_order_data(job_id: uuid.UUID, **overrides: Any) -> dict:
    data = {
        "job_id": str(job_id),
        "template_type": "standard_event",
        "terms": make_terms(),
    }
    data.update(overrides)
    return data


def actor_headers(user: User) -> dict[str, str]:
    return {"X-Actor-Id": str(user.user_id)}
