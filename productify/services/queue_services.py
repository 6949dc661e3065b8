"""Durable named work queues backed by the database.

Delivery is at-least-once: a reserved entry carries a lease, and an entry whose
consumer dies is delivered again once the lease runs out. Failed attempts are
retried with exponential backoff until the attempt budget is spent, then the
entry is dead-lettered and kept for the failed-retention window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from productify.core.config import Settings
from productify.repositories.queue_entry import QueueEntryRepository, ACTIVE, COMPLETED, FAILED, WAITING
from productify.schemas.queue import QueueHandle, QueueOptions, QueueStats
from productify.services.base import BaseService
from productify.services.exceptions import UnknownQueueError
from productify.services.pipelines import ALL_QUEUES


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def backoff_delay_ms(base_delay_ms: int, attempts_made: int) -> int:
	"""Exponential backoff: base, 2x base, 4x base, ..."""
	return base_delay_ms * (2 ** max(attempts_made - 1, 0))


@dataclass
class Delivery:
	"""One reserved queue entry handed to a consumer."""
	id: int
	queue_name: str
	payload: Dict[str, Any]
	attempt: int
	max_attempts: int
	last_error: Optional[str] = None
	queue: Optional["Queue"] = field(default=None, repr=False)

	@property
	def is_final_attempt(self) -> bool:
		return self.attempt >= self.max_attempts

	def ack(self) -> bool:
		return self.queue.ack(self)

	def nack(self, error: str, retryable: bool = True) -> bool:
		"""Report a failed attempt; returns True when the entry is now dead."""
		return self.queue.nack(self, error, retryable=retryable)


class Queue(BaseService):
	"""A single named queue."""

	def __init__(
		self,
		name: str,
		session_factory: Callable[[], Session],
		defaults: QueueOptions,
		lease_seconds: int = 900,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self.name = name
		self.session_factory = session_factory
		self.defaults = defaults
		self.lease_seconds = lease_seconds

	def _options(self, options: Optional[QueueOptions]) -> Dict[str, int]:
		options = options or QueueOptions()
		return {
			"max_attempts": options.attempts or self.defaults.attempts,
			"backoff_delay_ms": options.backoff_delay_ms if options.backoff_delay_ms is not None else self.defaults.backoff_delay_ms,
			"remove_on_complete_seconds": options.remove_on_complete_seconds if options.remove_on_complete_seconds is not None else self.defaults.remove_on_complete_seconds,
			"remove_on_fail_seconds": options.remove_on_fail_seconds if options.remove_on_fail_seconds is not None else self.defaults.remove_on_fail_seconds,
			"delay_ms": options.delay_ms,
		}

	def enqueue(self, payload: Dict[str, Any], options: Optional[QueueOptions] = None, db: Optional[Session] = None) -> QueueHandle:
		"""Add a message to the queue.

		With `db`, the entry joins the caller's transaction and becomes visible only
		when the caller commits, so a row and the work it implies commit together.
		Without it, the entry is committed immediately.
		"""
		resolved = self._options(options)
		delay_ms = resolved.pop("delay_ms")

		def op(session: Session) -> QueueHandle:
			repo = QueueEntryRepository(session, self.correlation_id)
			entry = repo.create({
				"queue_name": self.name,
				"payload": payload,
				"status": WAITING,
				"attempts": 0,
				"available_at": utcnow() + timedelta(milliseconds=delay_ms),
				**resolved,
			})
			self.log_operation("enqueue", queue_name=self.name, entry_id=entry.id)
			return QueueHandle(id=entry.id, queue_name=self.name)

		if db is not None:
			return op(db)
		with self.session_factory() as session:
			return self.run_in_transaction(session, lambda: op(session))

	def reserve(self) -> Optional[Delivery]:
		"""Claim the next deliverable entry, or None when idle or paused."""
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)

			def op() -> Optional[Delivery]:
				if repo.is_paused(self.name):
					return None
				now = utcnow()
				entry = repo.claim_next(self.name, now, now + timedelta(seconds=self.lease_seconds))
				if entry is None:
					return None
				return self._delivery(entry)

			return self.run_in_transaction(session, op)

	def ack(self, delivery: Delivery) -> bool:
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			applied = self.run_in_transaction(session, lambda: repo.finish_active(
				delivery.id,
				delivery.attempt,
				{"status": COMPLETED, "finished_at": utcnow(), "locked_until": None},
			))
		if not applied:
			self.logger.warning(
				"Ack ignored, delivery no longer owns the entry",
				extra={"correlation_id": self.correlation_id, "queue_name": self.name, "entry_id": delivery.id},
			)
		return applied

	def nack(self, delivery: Delivery, error: str, retryable: bool = True) -> bool:
		"""Schedule a retry after backoff, or dead-letter when attempts are spent.

		Returns True when the entry is dead.
		"""
		now = utcnow()
		dead = (not retryable) or delivery.attempt >= delivery.max_attempts
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			entry = repo.get_by_id(delivery.id)
			if dead:
				values = {"status": FAILED, "finished_at": now, "locked_until": None, "last_error": error[:2000]}
			else:
				delay = backoff_delay_ms(entry.backoff_delay_ms if entry else 0, delivery.attempt)
				values = {
					"status": WAITING,
					"available_at": now + timedelta(milliseconds=delay),
					"locked_until": None,
					"last_error": error[:2000],
				}
			applied = self.run_in_transaction(session, lambda: repo.finish_active(delivery.id, delivery.attempt, values))

		self.logger.warning(
			"Delivery failed",
			extra={
				"correlation_id": self.correlation_id,
				"queue_name": self.name,
				"entry_id": delivery.id,
				"attempt": delivery.attempt,
				"dead": dead,
				"applied": applied,
				"error": error,
			},
		)
		return dead and applied

	def reap_expired(self) -> List[Delivery]:
		"""Dead-letter entries whose consumer vanished during their final attempt."""
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			entries = self.run_in_transaction(session, lambda: repo.expire_exhausted_leases(self.name, utcnow()))
			return [self._delivery(entry) for entry in entries]

	def stats(self) -> QueueStats:
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			counts = repo.count_by_state(self.name, utcnow())
			paused = repo.is_paused(self.name)
			session.rollback()
		return QueueStats(queue_name=self.name, paused=paused, **counts)

	def pause(self) -> None:
		self._set_paused(True)

	def resume(self) -> None:
		self._set_paused(False)

	def is_paused(self) -> bool:
		with self.session_factory() as session:
			paused = QueueEntryRepository(session, self.correlation_id).is_paused(self.name)
			session.rollback()
			return paused

	def _set_paused(self, paused: bool) -> None:
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			self.run_in_transaction(session, lambda: repo.set_paused(self.name, paused))
		self.log_operation("pause" if paused else "resume", queue_name=self.name)

	def purge(self) -> int:
		"""Drop completed and dead entries past their retention windows."""
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			return self.run_in_transaction(session, lambda: repo.purge_expired(self.name, utcnow()))

	def clean(self, grace_seconds: int, status: str = COMPLETED) -> int:
		"""Operator cleanup: drop finished entries older than `grace_seconds`."""
		if status not in (COMPLETED, FAILED):
			raise ValueError(f"Only finished entries can be cleaned, got '{status}'")
		cutoff = utcnow() - timedelta(seconds=grace_seconds)
		with self.session_factory() as session:
			repo = QueueEntryRepository(session, self.correlation_id)
			removed = self.run_in_transaction(session, lambda: repo.delete_finished_before(self.name, status, cutoff))
		self.log_operation("clean", queue_name=self.name, status=status, removed=removed)
		return removed

	def _delivery(self, entry) -> Delivery:
		return Delivery(
			id=entry.id,
			queue_name=entry.queue_name,
			payload=dict(entry.payload or {}),
			attempt=entry.attempts,
			max_attempts=entry.max_attempts,
			last_error=entry.last_error,
			queue=self,
		)


class QueueRegistry:
	"""The set of queues a process talks to, built once at startup and passed around."""

	def __init__(self, queues: Iterable[Queue]):
		self._queues: Dict[str, Queue] = {queue.name: queue for queue in queues}

	@classmethod
	def from_settings(cls, session_factory: Callable[[], Session], settings: Settings, names: Iterable[str] = ALL_QUEUES) -> "QueueRegistry":
		defaults = QueueOptions(
			attempts=settings.QUEUE_DEFAULT_ATTEMPTS,
			backoff_delay_ms=settings.QUEUE_BACKOFF_DELAY_MS,
			remove_on_complete_seconds=settings.QUEUE_REMOVE_ON_COMPLETE_SECONDS,
			remove_on_fail_seconds=settings.QUEUE_REMOVE_ON_FAIL_SECONDS,
		)
		return cls(
			Queue(name, session_factory, defaults, lease_seconds=settings.QUEUE_LEASE_SECONDS)
			for name in names
		)

	def get(self, name: str) -> Queue:
		try:
			return self._queues[name]
		except KeyError:
			raise UnknownQueueError(name) from None

	def __contains__(self, name: str) -> bool:
		return name in self._queues

	def names(self) -> List[str]:
		return list(self._queues)

	def enqueue(self, name: str, payload: Dict[str, Any], options: Optional[QueueOptions] = None, db: Optional[Session] = None) -> QueueHandle:
		return self.get(name).enqueue(payload, options=options, db=db)

	def purge_all(self) -> Dict[str, int]:
		return {name: queue.purge() for name, queue in self._queues.items()}
