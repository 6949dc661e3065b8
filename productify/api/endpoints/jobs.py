from datetime import datetime
from typing import Optional

from fastapi import Depends, Query, status
from sqlalchemy.orm import Session

from productify.api.router import create_router
from productify.api.dependencies.auth import get_current_user
from productify.api.dependencies.database import get_db
from productify.api.dependencies.services import get_job_service, get_ledger_service
from productify.db.models.user import User
from productify.schemas.job import (
	CreateJobInput,
	CreateJobResult,
	JobListInput,
	JobPage,
	JobRead,
	JobStatus,
	RegenerateImageInput,
	RegenerateImageResult,
)
from productify.schemas.transaction import TransactionRead
from productify.services.job_services import JobService
from productify.services.ledger_services import LedgerService


router = create_router(
	name="jobs",
	extra_responses={
		402: "Insufficient credits",
		409: "Job state conflict",
	},
)


@router.post("", response_model=CreateJobResult, status_code=status.HTTP_201_CREATED)
def create_job(
	payload: CreateJobInput,
	db: Session = Depends(get_db),
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	"""Create a generation job and debit its credits up front."""
	return job_service.create_job(current_user.id, payload, db)


@router.get("", response_model=JobPage)
def list_jobs(
	skip: int = Query(0, ge=0),
	limit: int = Query(10, ge=1, le=100),
	status_filter: Optional[JobStatus] = Query(None, alias="status"),
	since: Optional[datetime] = Query(None),
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	params = JobListInput(skip=skip, limit=limit, status=status_filter, since=since)
	return job_service.list_jobs(current_user.id, params)


@router.get("/{job_id}", response_model=JobRead)
def get_job(
	job_id: str,
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	return job_service.get_owned(job_id, current_user.id)


@router.get("/{job_id}/transactions", response_model=list[TransactionRead])
def get_job_transactions(
	job_id: str,
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
	ledger: LedgerService = Depends(get_ledger_service),
):
	job_service.get_owned(job_id, current_user.id)
	return ledger.job_transactions(job_id)


@router.post("/{job_id}/retry", response_model=JobRead)
def retry_job(
	job_id: str,
	db: Session = Depends(get_db),
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	"""Retry a failed job; any other status is a 409."""
	return job_service.retry_job(job_id, current_user.id, db)


@router.post("/{job_id}/regenerate-image", response_model=RegenerateImageResult, status_code=status.HTTP_202_ACCEPTED)
def regenerate_image(
	job_id: str,
	payload: RegenerateImageInput,
	db: Session = Depends(get_db),
	current_user: User = Depends(get_current_user),
	job_service: JobService = Depends(get_job_service),
):
	return job_service.regenerate_image(job_id, current_user.id, payload, db)
