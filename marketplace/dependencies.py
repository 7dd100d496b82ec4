"""Collaborator wiring for routes. Tests override these with FastAPI dependency_overrides."""

from fastapi import Depends

from marketplace.config import FeeConfig, settings
from marketplace.database import async_session_factory
from marketplace.models.job import JobStatus
from marketplace.services.audit import DatabaseAuditSink
from marketplace.services.contract import ContractService
from marketplace.services.escrow import EscrowLedger
from marketplace.services.fees import FeeCalculator
from marketplace.services.gateway import PaymentGateway, build_payment_gateway
from marketplace.services.job import JobStore


def get_fee_calculator() -> FeeCalculator:
    return FeeCalculator(FeeConfig.from_settings(settings))


def get_job_store() -> JobStore:
    return JobStore()


def get_payment_gateway() -> PaymentGateway:
    return build_payment_gateway(settings)


def get_audit_sink() -> DatabaseAuditSink:
    return DatabaseAuditSink(async_session_factory, query_limit=settings.audit_log_query_limit)


def get_escrow_ledger(
    fees: FeeCalculator = Depends(get_fee_calculator),
    jobs: JobStore = Depends(get_job_store),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    audit: DatabaseAuditSink = Depends(get_audit_sink),
) -> EscrowLedger:
    return EscrowLedger(
        fees, jobs, gateway, audit,
        fundable_status=JobStatus(settings.fundable_job_status),
    )


def get_contract_service(
    jobs: JobStore = Depends(get_job_store),
    audit: DatabaseAuditSink = Depends(get_audit_sink),
) -> ContractService:
    return ContractService(jobs, audit)
