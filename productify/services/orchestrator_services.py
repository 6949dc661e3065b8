"""Orchestrator: advances jobs through their pipelines.

It consumes the orchestrator queue, fans ready items out to their stage
queues, records stage outcomes, recomputes job status and progress from the
full item snapshot, and refunds the job's credits when it fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from productify.db.models.job import Job
from productify.repositories.job import JobRepository
from productify.repositories.transaction import TransactionRepository
from productify.repositories.user import UserRepository
from productify.schemas.job import ItemStatus, ItemType, JobStatus
from productify.services.base import BaseService
from productify.services.exceptions import QueueDeliveryExhaustedError
from productify.services.job_state import derive_status, next_progress
from productify.services.ledger_services import LedgerService
from productify.services.notifications import NotificationDispatcher
from productify.services.pipelines import STAGE_QUEUES, dependencies_by_type, resolve_pipeline
from productify.services.queue_services import QueueRegistry

ACTIVE_JOB_STATUSES = [JobStatus.PENDING.value, JobStatus.PROCESSING.value]


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass
class StageContext:
	"""Snapshot of what a stage worker needs, detached from any session."""
	job_id: str
	position: int
	item_type: ItemType
	item_status: ItemStatus
	config: Dict[str, Any]
	result: Optional[Dict[str, Any]]
	product_info: Dict[str, Any]
	original_image: Dict[str, Any]
	dependency_results: Dict[ItemType, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class _Outcome:
	"""Terminal transition observed while advancing a job; notified after commit."""
	status: JobStatus
	job_id: str
	user_name: str
	user_email: str
	product_name: str
	items_completed: int = 0
	credits_refunded: int = 0


class OrchestratorService(BaseService):
	def __init__(
		self,
		session_factory: Callable[[], Session],
		queues: QueueRegistry,
		notifications: Optional[NotificationDispatcher] = None,
		stale_job_timeout_minutes: int = 60,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self.session_factory = session_factory
		self.queues = queues
		self.notifications = notifications or NotificationDispatcher(correlation_id=correlation_id, session_factory=session_factory)
		self.stale_job_timeout = timedelta(minutes=stale_job_timeout_minutes)

	# ------------------------------------------------------------------
	# Queue handlers
	# ------------------------------------------------------------------

	def handle_job_message(self, payload: Dict[str, Any]) -> None:
		"""Consumer for the orchestrator queue."""
		self.start_job(payload["job_id"], payload.get("pipeline_name"))

	def handle_dead_letter(self, payload: Dict[str, Any], error: QueueDeliveryExhaustedError) -> None:
		"""A message used up its attempts; fail whatever it was addressing."""
		job_id = payload.get("job_id")
		if not job_id:
			return
		reason = f"Gave up after {error.attempts} attempts: {error.last_error}"
		if payload.get("regenerate_index") is not None:
			self.logger.warning(
				"Image regeneration abandoned",
				extra={"correlation_id": self.correlation_id, "job_id": job_id, "reason": reason},
			)
			return
		if payload.get("position") is not None:
			self.fail_item(job_id, int(payload["position"]), reason)
		else:
			self.fail_job(job_id, reason)

	# ------------------------------------------------------------------
	# Job transitions
	# ------------------------------------------------------------------

	def start_job(self, job_id: str, pipeline_name: Optional[str] = None) -> List[int]:
		"""Record the pipeline and dispatch every item whose dependencies are met.

		Returns the positions dispatched. Redelivered messages are harmless: items
		already dispatched are no longer pending.
		"""
		def op(db: Session, job: Job, outcomes: List[_Outcome]) -> List[int]:
			if job.status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
				self.log_operation("start_job_skipped", job_id=job.id, status=job.status)
				return []
			job.pipeline_name = pipeline_name or job.pipeline_name or resolve_pipeline(item.type for item in job.items)
			if job.started_at is None:
				job.started_at = utcnow()
			return self._advance(db, job, outcomes)

		dispatched = self._with_job(job_id, op) or []
		self.log_operation("start_job", job_id=job_id, dispatched=dispatched)
		return dispatched

	def complete_item(self, job_id: str, position: int, result: Dict[str, Any]) -> None:
		def op(db: Session, job: Job, outcomes: List[_Outcome]):
			item = self._item(job, position)
			if not self._accepts_result(job, item, "complete_item"):
				return None
			item.status = ItemStatus.COMPLETED.value
			item.result = dict(result)
			item.completed_at = utcnow()
			return self._advance(db, job, outcomes)

		self._with_job(job_id, op)
		self.log_operation("complete_item", job_id=job_id, position=position)

	def fail_item(self, job_id: str, position: int, error: str) -> None:
		def op(db: Session, job: Job, outcomes: List[_Outcome]):
			item = self._item(job, position)
			if not self._accepts_result(job, item, "fail_item"):
				return None
			item.status = ItemStatus.FAILED.value
			item.result = {**(item.result or {}), "error": error}
			item.completed_at = utcnow()
			return self._advance(db, job, outcomes)

		self._with_job(job_id, op)
		self.log_operation("fail_item", job_id=job_id, position=position, error=error)

	def fail_job(self, job_id: str, error: str) -> None:
		"""Fail every item that has not finished; completed items keep their results."""
		def op(db: Session, job: Job, outcomes: List[_Outcome]):
			now = utcnow()
			for item in job.items:
				if item.status in (ItemStatus.PENDING.value, ItemStatus.PROCESSING.value):
					item.status = ItemStatus.FAILED.value
					item.result = {**(item.result or {}), "error": error}
					item.completed_at = now
			return self._advance(db, job, outcomes)

		self._with_job(job_id, op)
		self.log_operation("fail_job", job_id=job_id, error=error)

	def replace_image(self, job_id: str, position: int, image_index: int, image: Dict[str, Any]) -> None:
		"""Swap one image of an enhanced-images item without touching any status."""
		def op(db: Session, job: Job, outcomes: List[_Outcome]):
			item = self._item(job, position)
			result = dict(item.result or {})
			images = list(result.get("images") or [])
			while len(images) <= image_index:
				images.append(None)
			images[image_index] = image
			result["images"] = images
			item.result = result
			return None

		self._with_job(job_id, op, notify=False)
		self.log_operation("replace_image", job_id=job_id, position=position, image_index=image_index)

	def sweep_stale_jobs(self, now: Optional[datetime] = None) -> List[str]:
		"""Fail jobs that have not moved within the stale timeout; their credits are refunded."""
		cutoff = (now or utcnow()) - self.stale_job_timeout
		with self.session_factory() as db:
			stale_ids = JobRepository(db, self.correlation_id).find_stale(ACTIVE_JOB_STATUSES, cutoff)
			db.rollback()

		swept = []
		for job_id in stale_ids:
			def op(db: Session, job: Job, outcomes: List[_Outcome]):
				# Re-check under the lock; the job may have moved since the scan
				if job.status not in ACTIVE_JOB_STATUSES or _as_utc(job.updated_at) >= cutoff:
					return None
				now_ = utcnow()
				for item in job.items:
					if item.status in (ItemStatus.PENDING.value, ItemStatus.PROCESSING.value):
						item.status = ItemStatus.FAILED.value
						item.result = {**(item.result or {}), "error": "Job timed out"}
						item.completed_at = now_
				swept.append(job.id)
				return self._advance(db, job, outcomes)

			self._with_job(job_id, op)
		if swept:
			self.log_operation("sweep_stale_jobs", swept=swept)
		return swept

	# ------------------------------------------------------------------
	# Stage worker support
	# ------------------------------------------------------------------

	def load_stage_context(self, job_id: str, position: int) -> Optional[StageContext]:
		with self.session_factory() as db:
			job = JobRepository(db, self.correlation_id).get(job_id)
			if job is None or position >= len(job.items):
				return None
			item = job.items[position]
			dependency_results: Dict[ItemType, Dict[str, Any]] = {}
			for other in job.items:
				if other.status == ItemStatus.COMPLETED.value and other.result:
					dependency_results.setdefault(ItemType(other.type), dict(other.result))
			context = StageContext(
				job_id=job.id,
				position=item.position,
				item_type=ItemType(item.type),
				item_status=ItemStatus(item.status),
				config=dict(item.config or {}),
				result=dict(item.result) if item.result else None,
				product_info=dict(job.product_info or {}),
				original_image=dict(job.original_image or {}),
				dependency_results=dependency_results,
			)
			db.rollback()
			return context

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	def _with_job(self, job_id: str, op: Callable[[Session, Job, List[_Outcome]], Any], notify: bool = True) -> Any:
		"""Run `op` against the locked job in its own transaction, then notify outcomes."""
		outcomes: List[_Outcome] = []

		with self.session_factory() as db:
			def unit():
				job = JobRepository(db, self.correlation_id).get_for_update(job_id)
				if job is None:
					self.logger.warning("Job not found", extra={"correlation_id": self.correlation_id, "job_id": job_id})
					return None
				return op(db, job, outcomes)

			result = self.run_in_transaction(db, unit)

		if notify:
			for outcome in outcomes:
				self._notify(outcome)
		return result

	def _advance(self, db: Session, job: Job, outcomes: List[_Outcome]) -> List[int]:
		"""Dispatch newly ready items, then recompute status and progress.

		Refunds the unrefunded credits exactly once when the job turns failed.
		"""
		dispatched = self._dispatch_ready(db, job)

		previous = job.status
		status = derive_status(job.items)
		now = utcnow()
		job.status = status.value
		job.progress = next_progress(job.progress, job.items)
		job.updated_at = now

		if status == JobStatus.COMPLETED and previous != JobStatus.COMPLETED.value:
			job.completed_at = now
			outcomes.append(self._outcome(job, status))
		elif status == JobStatus.FAILED and previous != JobStatus.FAILED.value:
			job.failed_at = now
			refunded = self._refund(db, job)
			outcomes.append(self._outcome(job, status, credits_refunded=refunded))

		if job.status != previous:
			self.log_operation("job_status_changed", job_id=job.id, previous=previous, status=job.status, progress=job.progress)
		return dispatched

	def _dispatch_ready(self, db: Session, job: Job) -> List[int]:
		items = job.items
		if any(item.status == ItemStatus.FAILED.value for item in items):
			return []

		dependencies = dependencies_by_type(job.pipeline_name, [item.type for item in items])
		unfinished_types = {ItemType(item.type) for item in items if item.status != ItemStatus.COMPLETED.value}

		dispatched: List[int] = []
		now = utcnow()
		for item in items:
			if item.status != ItemStatus.PENDING.value:
				continue
			if dependencies.get(ItemType(item.type), frozenset()) & unfinished_types:
				continue
			item.status = ItemStatus.PROCESSING.value
			item.started_at = now
			self.queues.enqueue(STAGE_QUEUES[ItemType(item.type)], {
				"job_id": job.id,
				"position": item.position,
				"type": item.type,
				"config": dict(item.config or {}),
			}, db=db)
			dispatched.append(item.position)
		return dispatched

	def _refund(self, db: Session, job: Job) -> int:
		amount = job.credits_spent - job.credits_refunded
		if amount <= 0:
			return 0
		ledger = LedgerService(UserRepository(db, self.correlation_id), TransactionRepository(db, self.correlation_id), self.correlation_id)
		entry = ledger.record_job_refund(
			job.user_id,
			amount,
			job.id,
			f"Refund for failed job {job.id}",
			refund_reason=_failure_reason(job),
		)
		job.credits_refunded += entry.amount
		job.refunded_at = utcnow()
		return entry.amount

	def _outcome(self, job: Job, status: JobStatus, credits_refunded: int = 0) -> _Outcome:
		user = job.user
		return _Outcome(
			status=status,
			job_id=job.id,
			user_name=user.name if user else "",
			user_email=user.email if user else "",
			product_name=(job.product_info or {}).get("name", ""),
			items_completed=sum(1 for item in job.items if item.status == ItemStatus.COMPLETED.value),
			credits_refunded=credits_refunded,
		)

	def _notify(self, outcome: _Outcome) -> None:
		if outcome.status == JobStatus.COMPLETED:
			self.notifications.job_completed(outcome.user_name, outcome.user_email, outcome.product_name, outcome.job_id, outcome.items_completed)
		else:
			self.notifications.job_failed(outcome.user_name, outcome.user_email, outcome.product_name, outcome.job_id, outcome.credits_refunded)

	def _accepts_result(self, job: Job, item, operation: str) -> bool:
		# Terminal and reset items only move through retry or regenerate
		if item.status == ItemStatus.PROCESSING.value:
			return True
		self.log_operation(
			"stage_result_ignored",
			job_id=job.id,
			position=item.position,
			item_status=item.status,
			rejected=operation,
		)
		return False

	@staticmethod
	def _item(job: Job, position: int):
		for item in job.items:
			if item.position == position:
				return item
		raise IndexError(f"Job {job.id} has no item at position {position}")


def _failure_reason(job: Job) -> Optional[str]:
	for item in job.items:
		if item.status == ItemStatus.FAILED.value and item.result and item.result.get("error"):
			return f"{item.type}: {item.result['error']}"[:500]
	return None


def _as_utc(value: Optional[datetime]) -> datetime:
	if value is None:
		return datetime.min.replace(tzinfo=timezone.utc)
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value
