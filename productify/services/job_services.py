from __future__ import annotations

from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from productify.db.models.job import Job
from productify.repositories.job import JobRepository
from productify.repositories.user import UserRepository
from productify.schemas.job import (
	CreateJobInput,
	CreateJobResult,
	ItemStatus,
	ItemType,
	JobListInput,
	JobPage,
	JobRead,
	JobStatus,
	RegenerateImageInput,
	RegenerateImageResult,
)
from productify.services.base import BaseService
from productify.services.exceptions import (
	InvalidJobStateError,
	JobAccessDeniedError,
	JobNotFoundError,
	UserInactiveError,
	UserNotFoundError,
	ValidationError,
)
from productify.services.ledger_services import LedgerService
from productify.services.pipelines import ORCHESTRATOR_QUEUE, STAGE_QUEUES, resolve_pipeline
from productify.services.queue_services import QueueRegistry


def image_count(item) -> int:
	"""Images an enhanced-images item has or will have: config count or what was produced."""
	config = item.config or {}
	try:
		requested = int(config.get("count", 1))
	except (TypeError, ValueError):
		requested = 1
	produced = len((item.result or {}).get("images") or [])
	return max(requested, produced, 1)


class JobService(BaseService):
	"""Job lifecycle entry points: create, read, list, retry and regenerate."""

	def __init__(
		self,
		job_repo: JobRepository,
		user_repo: UserRepository,
		ledger: LedgerService,
		queues: QueueRegistry,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self._set_repositories(job_repo=job_repo, user_repo=user_repo)
		self.ledger = ledger
		self.queues = queues

	def create_job(self, user_id: int, data: CreateJobInput, db: Session) -> CreateJobResult:
		"""Create the job, debit its credits and queue it for orchestration.

		All three happen in one transaction: if the debit is refused the job row is
		rolled back with it and nothing is queued.
		"""
		def op():
			user = self.user_repo.get_by_id(user_id)
			if not user:
				raise UserNotFoundError(user_id, correlation_id=self.correlation_id)
			if not user.is_active:
				raise UserInactiveError(user_id, correlation_id=self.correlation_id)

			pipeline_name = resolve_pipeline(item.type for item in data.items)
			total = data.total_credits
			job = self.job_repo.create_with_items(
				{
					"user_id": user_id,
					"status": JobStatus.PENDING.value,
					"progress": 0,
					"pipeline_name": pipeline_name,
					"product_info": data.product_info.model_dump(exclude_none=True),
					"original_image": data.original_image.model_dump(exclude_none=True),
					"total_credits": total,
					"credits_spent": total,
					"credits_refunded": 0,
				},
				[
					{
						"type": item.type.value,
						"credits": item.credits,
						"config": dict(item.config),
						"status": ItemStatus.PENDING.value,
					}
					for item in data.items
				],
			)
			if total > 0:
				self.ledger.record_job_debit(
					user_id,
					total,
					job.id,
					f"Generation job for {data.product_info.name} ({len(data.items)} items)",
				)
			self.queues.enqueue(ORCHESTRATOR_QUEUE, {"job_id": job.id, "pipeline_name": pipeline_name}, db=db)
			return job, self.ledger.get_balance(user_id)

		job, remaining = self.run_in_transaction(db, op)
		self.log_operation("create_job", job_id=job.id, user_id=user_id, pipeline_name=job.pipeline_name, total_credits=job.total_credits)
		return CreateJobResult(job=JobRead.model_validate(job), remaining_credits=remaining)

	def get_owned(self, job_id: str, user_id: int) -> Job:
		job = self.job_repo.get(job_id)
		if not job:
			raise JobNotFoundError(job_id, correlation_id=self.correlation_id)
		if job.user_id != user_id:
			raise JobAccessDeniedError(job_id, user_id, correlation_id=self.correlation_id)
		return job

	def list_jobs(self, user_id: int, params: JobListInput) -> JobPage:
		jobs, total = self.job_repo.list_for_user(
			user_id,
			skip=params.skip,
			limit=params.limit,
			status=params.status.value if params.status else None,
			since=params.since,
		)
		return JobPage(
			jobs=[JobRead.model_validate(job) for job in jobs],
			total=total,
			has_more=params.skip + len(jobs) < total,
		)

	def retry_job(self, job_id: str, user_id: int, db: Session) -> JobRead:
		"""Put a failed job back in the orchestrator queue.

		Failed items return to pending with their error cleared; completed items
		keep their results. Credits are not charged again.
		"""
		def op():
			job = self.job_repo.get_for_update(job_id)
			if not job:
				raise JobNotFoundError(job_id, correlation_id=self.correlation_id)
			if job.user_id != user_id:
				raise JobAccessDeniedError(job_id, user_id, correlation_id=self.correlation_id)
			if job.status != JobStatus.FAILED.value:
				raise InvalidJobStateError(job_id, job.status, "retry", correlation_id=self.correlation_id)

			reset = 0
			for item in job.items:
				if item.status == ItemStatus.FAILED.value:
					item.status = ItemStatus.PENDING.value
					item.result = _without_error(item.result)
					item.started_at = None
					item.completed_at = None
					reset += 1

			pipeline_name = resolve_pipeline(item.type for item in job.items)
			self.job_repo.update_fields(job, {
				"status": JobStatus.PENDING.value,
				"progress": 0,
				"pipeline_name": pipeline_name,
				"failed_at": None,
				"completed_at": None,
			})
			self.queues.enqueue(ORCHESTRATOR_QUEUE, {"job_id": job.id, "pipeline_name": pipeline_name}, db=db)
			return job, reset

		job, reset = self.run_in_transaction(db, op)
		self.log_operation("retry_job", job_id=job_id, items_reset=reset, pipeline_name=job.pipeline_name)
		return JobRead.model_validate(job)

	def regenerate_image(self, job_id: str, user_id: int, data: RegenerateImageInput, db: Session) -> RegenerateImageResult:
		"""Queue one replacement image for an enhanced-images item.

		Job status, progress and pipeline are left alone; the stage worker swaps the
		addressed image in the item result when it finishes.
		"""
		def op():
			job = self.get_owned(job_id, user_id)
			if data.item_index >= len(job.items):
				raise ValidationError(
					"item_index",
					f"job has {len(job.items)} items",
					correlation_id=self.correlation_id,
				)
			item = job.items[data.item_index]
			if item.type != ItemType.ENHANCED_IMAGES.value:
				raise ValidationError(
					"item_index",
					f"only {ItemType.ENHANCED_IMAGES.value} items can be regenerated, got {item.type}",
					correlation_id=self.correlation_id,
				)
			available = image_count(item)
			if data.image_index >= available:
				raise ValidationError(
					"image_index",
					f"item has {available} images",
					correlation_id=self.correlation_id,
				)

			queue_name = STAGE_QUEUES[ItemType.ENHANCED_IMAGES]
			handle = self.queues.enqueue(queue_name, {
				"job_id": job.id,
				"position": item.position,
				"type": item.type,
				"config": {**(item.config or {}), "regenerateIndex": data.image_index},
				"regenerate_index": data.image_index,
			}, db=db)
			return handle

		handle = self.run_in_transaction(db, op)
		self.log_operation("regenerate_image", job_id=job_id, item_index=data.item_index, image_index=data.image_index)
		return RegenerateImageResult(
			job_id=job_id,
			item_index=data.item_index,
			image_index=data.image_index,
			queue_name=handle.queue_name,
			queue_entry_id=handle.id,
		)


def _without_error(result: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
	if not result:
		return None
	cleaned = {key: value for key, value in result.items() if key != "error"}
	return cleaned or None
