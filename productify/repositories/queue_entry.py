"""Queue entry repository: claim, acknowledge and retention queries."""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from productify.repositories.base import BaseRepository
from productify.db.models.queue_entry import QueueEntry
from productify.db.models.queue_state import QueueState

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"


class QueueEntryRepository(BaseRepository[QueueEntry]):

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, QueueEntry, correlation_id)

	def _deliverable(self, queue_name: str, now: datetime):
		# Waiting and due, or active with an expired lease that still has attempts left
		return and_(
			QueueEntry.queue_name == queue_name,
			or_(
				and_(QueueEntry.status == WAITING, QueueEntry.available_at <= now),
				and_(
					QueueEntry.status == ACTIVE,
					QueueEntry.locked_until < now,
					QueueEntry.attempts < QueueEntry.max_attempts,
				),
			),
		)

	def claim_next(self, queue_name: str, now: datetime, lease_until: datetime, batch: int = 5) -> Optional[QueueEntry]:
		"""Move one deliverable entry to active and return it.

		Candidates are read first, then claimed with a conditional UPDATE; a zero
		rowcount means another consumer won that entry and the next one is tried.
		"""
		candidates = self.db.execute(
			select(QueueEntry.id)
			.where(self._deliverable(queue_name, now))
			.order_by(QueueEntry.available_at, QueueEntry.id)
			.limit(batch)
		).scalars().all()

		for entry_id in candidates:
			stmt = (
				update(QueueEntry)
				.where(QueueEntry.id == entry_id, self._deliverable(queue_name, now))
				.values(
					status=ACTIVE,
					attempts=QueueEntry.attempts + 1,
					locked_until=lease_until,
				)
				.execution_options(synchronize_session=False)
			)
			if self.db.execute(stmt).rowcount == 1:
				entry = self.db.get(QueueEntry, entry_id, populate_existing=True)
				self._log_operation("claim_next", queue_name=queue_name, entry_id=entry_id, attempt=entry.attempts)
				return entry
		return None

	def finish_active(self, entry_id: int, attempt: int, values: Dict[str, Any]) -> bool:
		"""Update an entry only if this delivery still owns it.

		`attempt` fences out a consumer whose lease expired and was redelivered.
		"""
		stmt = (
			update(QueueEntry)
			.where(
				QueueEntry.id == entry_id,
				QueueEntry.status == ACTIVE,
				QueueEntry.attempts == attempt,
			)
			.values(**values)
			.execution_options(synchronize_session=False)
		)
		return self.db.execute(stmt).rowcount == 1

	def expire_exhausted_leases(self, queue_name: str, now: datetime, limit: int = 100) -> List[QueueEntry]:
		"""Dead-letter active entries whose lease expired on their final attempt."""
		candidates = self.db.execute(
			select(QueueEntry.id)
			.where(
				QueueEntry.queue_name == queue_name,
				QueueEntry.status == ACTIVE,
				QueueEntry.locked_until < now,
				QueueEntry.attempts >= QueueEntry.max_attempts,
			)
			.limit(limit)
		).scalars().all()

		expired: List[QueueEntry] = []
		for entry_id in candidates:
			stmt = (
				update(QueueEntry)
				.where(QueueEntry.id == entry_id, QueueEntry.status == ACTIVE, QueueEntry.locked_until < now)
				.values(status=FAILED, finished_at=now, locked_until=None, last_error="lease expired")
				.execution_options(synchronize_session=False)
			)
			if self.db.execute(stmt).rowcount == 1:
				expired.append(self.db.get(QueueEntry, entry_id, populate_existing=True))
		return expired

	def count_by_state(self, queue_name: str, now: datetime) -> Dict[str, int]:
		counts = {"waiting": 0, "active": 0, "delayed": 0, "completed": 0, "failed": 0}
		rows = self.db.execute(
			select(QueueEntry.status, func.count())
			.where(QueueEntry.queue_name == queue_name)
			.group_by(QueueEntry.status)
		).all()
		for status, total in rows:
			if status in counts:
				counts[status] = total

		delayed = self.db.execute(
			select(func.count())
			.select_from(QueueEntry)
			.where(
				QueueEntry.queue_name == queue_name,
				QueueEntry.status == WAITING,
				QueueEntry.available_at > now,
			)
		).scalar_one()
		counts["delayed"] = delayed
		counts["waiting"] -= delayed
		return counts

	def delete_finished_before(self, queue_name: str, status: str, cutoff: datetime) -> int:
		stmt = (
			delete(QueueEntry)
			.where(
				QueueEntry.queue_name == queue_name,
				QueueEntry.status == status,
				QueueEntry.finished_at < cutoff,
			)
			.execution_options(synchronize_session=False)
		)
		return self.db.execute(stmt).rowcount

	def purge_expired(self, queue_name: str, now: datetime) -> int:
		"""Apply each entry's own retention window to finished entries."""
		removed = 0
		for status, column in ((COMPLETED, QueueEntry.remove_on_complete_seconds), (FAILED, QueueEntry.remove_on_fail_seconds)):
			windows = self.db.execute(
				select(column)
				.where(QueueEntry.queue_name == queue_name, QueueEntry.status == status)
				.distinct()
			).scalars().all()
			for seconds in windows:
				stmt = (
					delete(QueueEntry)
					.where(
						QueueEntry.queue_name == queue_name,
						QueueEntry.status == status,
						column == seconds,
						QueueEntry.finished_at < now - timedelta(seconds=seconds),
					)
					.execution_options(synchronize_session=False)
				)
				removed += self.db.execute(stmt).rowcount
		self._log_operation("purge_expired", queue_name=queue_name, removed=removed)
		return removed

	def is_paused(self, queue_name: str) -> bool:
		state = self.db.get(QueueState, queue_name)
		return bool(state and state.paused)

	def set_paused(self, queue_name: str, paused: bool) -> None:
		state = self.db.get(QueueState, queue_name)
		if state is None:
			state = QueueState(queue_name=queue_name, paused=paused)
			self.db.add(state)
		else:
			state.paused = paused
		self.db.flush()
