"""Worker process wiring: queue registry, orchestrator, stage workers and threads."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from productify.core.config import Settings
from productify.generators.contracts import GenerationClient, Notifier
from productify.services.notifications import NotificationDispatcher
from productify.services.orchestrator_services import OrchestratorService
from productify.services.pipelines import ORCHESTRATOR_QUEUE
from productify.services.queue_services import QueueRegistry
from productify.workers.consumer import QueueConsumer
from productify.workers.stages import StageWorker


class WorkerRuntime:
	def __init__(
		self,
		session_factory: Callable[[], Session],
		settings: Settings,
		generators: GenerationClient,
		notifier: Optional[Notifier] = None,
		queues: Optional[QueueRegistry] = None,
	):
		self.settings = settings
		self.queues = queues or QueueRegistry.from_settings(session_factory, settings)
		self.orchestrator = OrchestratorService(
			session_factory,
			self.queues,
			NotificationDispatcher(notifier, session_factory=session_factory),
			stale_job_timeout_minutes=settings.STALE_JOB_TIMEOUT_MINUTES,
		)
		self.stage_worker = StageWorker(self.orchestrator, generators, session_factory)
		self.stop_event = threading.Event()
		self.threads: List[threading.Thread] = []
		self.logger = logging.getLogger(self.__class__.__name__)

	def consumer_for(self, queue_name: str) -> QueueConsumer:
		handler = self.orchestrator.handle_job_message if queue_name == ORCHESTRATOR_QUEUE else self.stage_worker.handle
		return QueueConsumer(
			self.queues.get(queue_name),
			handler,
			on_dead_letter=self.orchestrator.handle_dead_letter,
			poll_interval=self.settings.QUEUE_POLL_INTERVAL_SECONDS,
		)

	def drain(self, max_rounds: int = 100) -> int:
		"""Run every queue until all are idle; used for synchronous runs and tests."""
		consumers = [self.consumer_for(name) for name in self.queues.names()]
		handled_total = 0
		for _ in range(max_rounds):
			handled = sum(consumer.drain() for consumer in consumers)
			handled_total += handled
			if handled == 0:
				break
		return handled_total

	def run_maintenance(self) -> None:
		purged = self.queues.purge_all()
		swept = self.orchestrator.sweep_stale_jobs()
		self.logger.info("Maintenance pass", extra={"purged": purged, "stale_jobs": swept})

	def start(self) -> None:
		for name in self.queues.names():
			for slot in range(self.settings.stage_concurrency(name)):
				consumer = self.consumer_for(name)
				thread = threading.Thread(target=consumer.run, args=(self.stop_event,), name=f"{name}-{slot}", daemon=True)
				thread.start()
				self.threads.append(thread)

		maintenance = threading.Thread(target=self._maintenance_loop, name="maintenance", daemon=True)
		maintenance.start()
		self.threads.append(maintenance)
		self.logger.info("Worker started", extra={"threads": len(self.threads)})

	def stop(self, timeout: float = 30.0) -> None:
		self.stop_event.set()
		for thread in self.threads:
			thread.join(timeout)
		self.logger.info("Worker stopped")

	def _maintenance_loop(self) -> None:
		while not self.stop_event.wait(self.settings.MAINTENANCE_INTERVAL_SECONDS):
			try:
				self.run_maintenance()
			except Exception:
				self.logger.exception("Maintenance pass failed")
