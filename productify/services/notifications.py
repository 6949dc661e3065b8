"""Job outcome notifications.

Delivery is fire and forget: a failing notifier is logged and never affects the
job or the ledger.
"""

import logging
from typing import Callable, Optional

from productify.core.observability import log_outbound_call
from productify.generators.contracts import Notifier


class LoggingNotifier:
	"""Default notifier; writes the notification to the log instead of sending it."""

	def __init__(self):
		self.logger = logging.getLogger(self.__class__.__name__)

	def notify_job_completed(self, user_name: str, user_email: str, product_name: str, job_id: str, items_completed: int) -> None:
		self.logger.info(
			"Job completed notification",
			extra={"job_id": job_id, "user_email": user_email, "product_name": product_name, "items_completed": items_completed},
		)

	def notify_job_failed(self, user_name: str, user_email: str, product_name: str, job_id: str, credits_refunded: int) -> None:
		self.logger.info(
			"Job failed notification",
			extra={"job_id": job_id, "user_email": user_email, "product_name": product_name, "credits_refunded": credits_refunded},
		)


class NotificationDispatcher:
	"""Wraps a Notifier so delivery errors stay out of the caller's path."""

	def __init__(self, notifier: Optional[Notifier] = None, correlation_id: Optional[str] = None, session_factory: Optional[Callable] = None):
		self.notifier = notifier or LoggingNotifier()
		self.correlation_id = correlation_id
		self.session_factory = session_factory
		self.logger = logging.getLogger(self.__class__.__name__)

	def job_completed(self, user_name: str, user_email: str, product_name: str, job_id: str, items_completed: int) -> bool:
		return self._send(
			"notify_job_completed",
			job_id,
			lambda: self.notifier.notify_job_completed(user_name, user_email, product_name, job_id, items_completed),
		)

	def job_failed(self, user_name: str, user_email: str, product_name: str, job_id: str, credits_refunded: int) -> bool:
		return self._send(
			"notify_job_failed",
			job_id,
			lambda: self.notifier.notify_job_failed(user_name, user_email, product_name, job_id, credits_refunded),
		)

	def _send(self, operation: str, job_id: str, call) -> bool:
		try:
			log_outbound_call("notifier", job_id, operation, self.correlation_id, call, session_factory=self.session_factory)
			return True
		except Exception as e:
			self.logger.error(
				"Notification delivery failed",
				extra={"correlation_id": self.correlation_id, "job_id": job_id, "operation": operation, "error": str(e)},
			)
			return False
