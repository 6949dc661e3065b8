"""Job repository for job and job item persistence."""

from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple
from sqlalchemy.orm import Session, selectinload

from productify.repositories.base import BaseRepository
from productify.db.models.job import Job
from productify.db.models.job_item import JobItem


class JobRepository(BaseRepository[Job]):
	"""Repository for Job aggregates; items are always loaded with their job."""

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, Job, correlation_id)

	def create_with_items(self, fields: Dict[str, Any], items: List[Dict[str, Any]]) -> Job:
		job = Job(**fields)
		for position, item in enumerate(items):
			job.items.append(JobItem(position=position, **item))
		self.db.add(job)
		self.db.flush()
		self._log_operation("create_with_items", job_id=job.id, item_count=len(items))
		return job

	def get(self, job_id: str) -> Optional[Job]:
		result = (
			self.db.query(Job)
			.options(selectinload(Job.items))
			.filter(Job.id == job_id)
			.first()
		)
		self._log_operation("get", job_id=job_id, found=result is not None)
		return result

	def get_for_update(self, job_id: str) -> Optional[Job]:
		"""Load the job with a row lock so item aggregation for one job is serialized."""
		result = (
			self.db.query(Job)
			.options(selectinload(Job.items))
			.filter(Job.id == job_id)
			.with_for_update()
			.populate_existing()
			.first()
		)
		self._log_operation("get_for_update", job_id=job_id, found=result is not None)
		return result

	def list_for_user(
		self,
		user_id: int,
		skip: int = 0,
		limit: int = 10,
		status: Optional[str] = None,
		since: Optional[datetime] = None,
	) -> Tuple[List[Job], int]:
		query = self.db.query(Job).filter(Job.user_id == user_id)
		if status:
			query = query.filter(Job.status == status)
		if since:
			query = query.filter(Job.created_at >= since)

		total = query.count()
		rows = (
			query.options(selectinload(Job.items))
			.order_by(Job.created_at.desc(), Job.id.desc())
			.offset(skip)
			.limit(limit)
			.all()
		)
		self._log_operation("list_for_user", user_id=user_id, total=total, returned=len(rows))
		return rows, total

	def find_stale(self, statuses: List[str], updated_before: datetime, limit: int = 100) -> List[str]:
		"""Ids of jobs in the given statuses that have not been touched since the cutoff."""
		rows = (
			self.db.query(Job.id)
			.filter(Job.status.in_(statuses), Job.updated_at < updated_before)
			.order_by(Job.updated_at)
			.limit(limit)
			.all()
		)
		return [row[0] for row in rows]
