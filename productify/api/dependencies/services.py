"""Service dependency providers for FastAPI dependency injection."""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from productify.api.dependencies.database import get_db
from productify.api.dependencies.queues import get_queue_registry
from productify.repositories.job import JobRepository
from productify.repositories.transaction import TransactionRepository
from productify.repositories.user import UserRepository
from productify.services.job_services import JobService
from productify.services.ledger_services import LedgerService
from productify.services.queue_services import QueueRegistry


def get_correlation_id(request: Request) -> Optional[str]:
	"""Extract or generate correlation ID for logging and tracing."""
	from productify.core.observability import generate_correlation_id
	cid = getattr(request.state, "correlation_id", None)
	if not cid:
		cid = generate_correlation_id(request.headers.get("X-Correlation-ID"))
		setattr(request.state, "correlation_id", cid)
	return cid


# Repository Dependencies
def get_user_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> UserRepository:
	return UserRepository(db=db, correlation_id=correlation_id)


def get_job_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> JobRepository:
	return JobRepository(db=db, correlation_id=correlation_id)


def get_transaction_repository(
	db: Session = Depends(get_db),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> TransactionRepository:
	return TransactionRepository(db=db, correlation_id=correlation_id)


# Service Dependencies
def get_ledger_service(
	user_repo: UserRepository = Depends(get_user_repository),
	transaction_repo: TransactionRepository = Depends(get_transaction_repository),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> LedgerService:
	return LedgerService(user_repo=user_repo, transaction_repo=transaction_repo, correlation_id=correlation_id)


def get_job_service(
	job_repo: JobRepository = Depends(get_job_repository),
	user_repo: UserRepository = Depends(get_user_repository),
	ledger: LedgerService = Depends(get_ledger_service),
	queues: QueueRegistry = Depends(get_queue_registry),
	correlation_id: Optional[str] = Depends(get_correlation_id)
) -> JobService:
	"""Provide JobService; all repositories share the request's session."""
	return JobService(
		job_repo=job_repo,
		user_repo=user_repo,
		ledger=ledger,
		queues=queues,
		correlation_id=correlation_id,
	)
