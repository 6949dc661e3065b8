"""Poll loop that feeds queue deliveries to a handler."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from productify.services.exceptions import QueueDeliveryExhaustedError
from productify.services.queue_services import Delivery, Queue

Handler = Callable[[Dict[str, Any]], None]
DeadLetterHandler = Callable[[Dict[str, Any], QueueDeliveryExhaustedError], None]


class QueueConsumer:
	"""Reserve, handle, ack.

	A handler exception nacks the delivery; when that exhausts the entry the
	dead-letter handler is told, so the addressed work can be failed.
	"""

	def __init__(
		self,
		queue: Queue,
		handler: Handler,
		on_dead_letter: Optional[DeadLetterHandler] = None,
		poll_interval: float = 1.0,
	):
		self.queue = queue
		self.handler = handler
		self.on_dead_letter = on_dead_letter
		self.poll_interval = poll_interval
		self.logger = logging.getLogger(self.__class__.__name__)

	def run_once(self) -> bool:
		"""Process at most one delivery; returns False when the queue had nothing due."""
		for expired in self.queue.reap_expired():
			self._dead_letter(expired, expired.last_error or "lease expired")

		delivery = self.queue.reserve()
		if delivery is None:
			return False

		try:
			self.handler(delivery.payload)
		except Exception as e:
			self.logger.exception(
				"Handler failed",
				extra={"queue_name": self.queue.name, "entry_id": delivery.id, "attempt": delivery.attempt},
			)
			if delivery.nack(str(e) or type(e).__name__):
				self._dead_letter(delivery, str(e) or type(e).__name__)
		else:
			delivery.ack()
		return True

	def drain(self, max_deliveries: int = 1000) -> int:
		"""Process until nothing is due; returns the number of deliveries handled."""
		handled = 0
		while handled < max_deliveries and self.run_once():
			handled += 1
		return handled

	def run(self, stop: threading.Event) -> None:
		self.logger.info("Consumer started", extra={"queue_name": self.queue.name})
		while not stop.is_set():
			try:
				busy = self.run_once()
			except Exception:
				# Database hiccup while reserving; back off and keep the thread alive
				self.logger.exception("Consumer loop error", extra={"queue_name": self.queue.name})
				busy = False
			if not busy:
				stop.wait(self.poll_interval)
		self.logger.info("Consumer stopped", extra={"queue_name": self.queue.name})

	def _dead_letter(self, delivery: Delivery, last_error: str) -> None:
		error = QueueDeliveryExhaustedError(delivery.queue_name, delivery.id, delivery.attempt, last_error)
		self.logger.error(
			"Delivery dead-lettered",
			extra={"queue_name": delivery.queue_name, "entry_id": delivery.id, "attempts": delivery.attempt},
		)
		if self.on_dead_letter is None:
			return
		try:
			self.on_dead_letter(delivery.payload, error)
		except Exception:
			self.logger.exception("Dead-letter handler failed", extra={"queue_name": delivery.queue_name, "entry_id": delivery.id})
