"""Credit ledger: append-only entries plus the cached balance they fund.

Every balance change is a conditional UPDATE on the user row followed by an
entry recording balance_before/balance_after, inside one database transaction.
The `record_*` methods join the caller's transaction; the public operations
commit on their own.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy.exc import IntegrityError

from productify.db.models.transaction import CreditTransaction
from productify.repositories.transaction import TransactionRepository
from productify.repositories.user import UserRepository
from productify.schemas.transaction import (
	LedgerReconciliation,
	PaymentMethod,
	TransactionListInput,
	TransactionPage,
	TransactionRead,
	TransactionStatus,
	TransactionType,
)
from productify.services.base import BaseService
from productify.services.exceptions import InsufficientCreditsError, UserNotFoundError, ValidationError


class LedgerService(BaseService):
	def __init__(
		self,
		user_repo: UserRepository,
		transaction_repo: TransactionRepository,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self._set_repositories(user_repo=user_repo, transaction_repo=transaction_repo)

	@property
	def db(self):
		return self.transaction_repo.db

	# ------------------------------------------------------------------
	# Reads
	# ------------------------------------------------------------------

	def get_balance(self, user_id: int) -> int:
		balance = self.user_repo.get_balance(user_id)
		if balance is None:
			raise UserNotFoundError(user_id, correlation_id=self.correlation_id)
		return balance

	def list_transactions(self, user_id: int, params: Optional[TransactionListInput] = None) -> TransactionPage:
		params = params or TransactionListInput()
		rows, total = self.transaction_repo.list_for_user(
			user_id,
			skip=params.skip,
			limit=params.limit,
			transaction_type=params.type.value if params.type else None,
			status=params.status.value if params.status else None,
			since=params.since,
		)
		return TransactionPage(
			transactions=[TransactionRead.from_entry(row) for row in rows],
			total=total,
			has_more=params.skip + len(rows) < total,
		)

	def job_transactions(self, job_id: str) -> List[TransactionRead]:
		return [TransactionRead.from_entry(row) for row in self.transaction_repo.list_for_job(job_id)]

	def reconcile(self, user_id: int) -> LedgerReconciliation:
		"""Compare the cached balance with the signed sum of completed entries."""
		cached = self.get_balance(user_id)
		latest = self.transaction_repo.latest_completed(user_id)
		result = LedgerReconciliation(
			user_id=user_id,
			cached_balance=cached,
			ledger_balance=self.transaction_repo.signed_sum(user_id),
			last_balance_after=latest.balance_after if latest else None,
		)
		if not result.consistent:
			self.logger.error(
				"Ledger out of balance",
				extra={
					"correlation_id": self.correlation_id,
					"user_id": user_id,
					"cached_balance": result.cached_balance,
					"ledger_balance": result.ledger_balance,
				},
			)
		return result

	# ------------------------------------------------------------------
	# Entries inside the caller's transaction
	# ------------------------------------------------------------------

	def record_debit(
		self,
		user_id: int,
		amount: int,
		transaction_type: TransactionType,
		description: str,
		**metadata,
	) -> CreditTransaction:
		"""Subtract `amount` and append the entry; refuses to overdraw."""
		self._check_amount(amount)
		if not self.user_repo.try_decrement_credits(user_id, amount):
			available = self.user_repo.get_balance(user_id)
			if available is None:
				raise UserNotFoundError(user_id, correlation_id=self.correlation_id)
			raise InsufficientCreditsError(user_id, amount, available, correlation_id=self.correlation_id)

		balance_after = self.user_repo.get_balance(user_id)
		return self._append(
			user_id,
			transaction_type,
			amount,
			balance_before=balance_after + amount,
			balance_after=balance_after,
			description=description,
			**metadata,
		)

	def record_credit(
		self,
		user_id: int,
		amount: int,
		transaction_type: TransactionType,
		description: str,
		**metadata,
	) -> CreditTransaction:
		"""Add `amount` and append the entry; never gated by the balance."""
		self._check_amount(amount)
		if not self.user_repo.increment_credits(user_id, amount):
			raise UserNotFoundError(user_id, correlation_id=self.correlation_id)

		balance_after = self.user_repo.get_balance(user_id)
		return self._append(
			user_id,
			transaction_type,
			amount,
			balance_before=balance_after - amount,
			balance_after=balance_after,
			description=description,
			**metadata,
		)

	def record_job_debit(self, user_id: int, amount: int, job_id: str, description: str) -> CreditTransaction:
		existing = self.transaction_repo.get_by_job_and_type(job_id, TransactionType.JOB_DEBIT.value)
		if existing:
			return existing
		return self.record_debit(user_id, amount, TransactionType.JOB_DEBIT, description, job_id=job_id)

	def record_job_refund(
		self,
		user_id: int,
		amount: int,
		job_id: str,
		description: str,
		refund_reason: Optional[str] = None,
	) -> CreditTransaction:
		"""At most one refund entry per job; a repeated call returns the first one."""
		existing = self.transaction_repo.get_by_job_and_type(job_id, TransactionType.JOB_REFUND.value)
		if existing:
			self.log_operation("refund_deduplicated", job_id=job_id, transaction_id=existing.id)
			return existing
		try:
			with self.db.begin_nested():
				return self.record_credit(
					user_id,
					amount,
					TransactionType.JOB_REFUND,
					description,
					job_id=job_id,
					refund_reason=refund_reason,
				)
		except IntegrityError:
			# Lost a race with a concurrent refund for the same job
			existing = self.transaction_repo.get_by_job_and_type(job_id, TransactionType.JOB_REFUND.value)
			if existing is None:
				raise
			return existing

	# ------------------------------------------------------------------
	# Standalone operations
	# ------------------------------------------------------------------

	def debit(self, user_id: int, amount: int, description: str, job_id: str) -> TransactionRead:
		entry = self.run_in_transaction(self.db, lambda: self.record_job_debit(user_id, amount, job_id, description))
		return TransactionRead.from_entry(entry)

	def refund(self, user_id: int, amount: int, description: str, job_id: str, refund_reason: Optional[str] = None) -> TransactionRead:
		entry = self.run_in_transaction(
			self.db,
			lambda: self.record_job_refund(user_id, amount, job_id, description, refund_reason=refund_reason),
		)
		return TransactionRead.from_entry(entry)

	def purchase(
		self,
		user_id: int,
		amount: int,
		order_id: str,
		payment_intent_id: str,
		payment_method: PaymentMethod = PaymentMethod.STRIPE,
		description: Optional[str] = None,
	) -> TransactionRead:
		entry = self.run_in_transaction(self.db, lambda: self.record_credit(
			user_id,
			amount,
			TransactionType.PURCHASE,
			description or f"Purchase of {amount} credits",
			order_id=order_id,
			payment_intent_id=payment_intent_id,
			payment_method=PaymentMethod(payment_method).value,
		))
		self.log_operation("purchase", user_id=user_id, amount=amount, order_id=order_id)
		return TransactionRead.from_entry(entry)

	def manual_credit(self, user_id: int, amount: int, admin_id: str, note: Optional[str] = None) -> TransactionRead:
		entry = self.run_in_transaction(self.db, lambda: self.record_credit(
			user_id,
			amount,
			TransactionType.MANUAL_CREDIT,
			note or f"Manual credit of {amount} credits",
			admin_id=admin_id,
			admin_note=note,
			payment_method=PaymentMethod.MANUAL.value,
		))
		self.log_operation("manual_credit", user_id=user_id, amount=amount, admin_id=admin_id)
		return TransactionRead.from_entry(entry)

	def manual_debit(self, user_id: int, amount: int, admin_id: str, note: Optional[str] = None) -> TransactionRead:
		entry = self.run_in_transaction(self.db, lambda: self.record_debit(
			user_id,
			amount,
			TransactionType.MANUAL_DEBIT,
			note or f"Manual debit of {amount} credits",
			admin_id=admin_id,
			admin_note=note,
			payment_method=PaymentMethod.MANUAL.value,
		))
		self.log_operation("manual_debit", user_id=user_id, amount=amount, admin_id=admin_id)
		return TransactionRead.from_entry(entry)

	def bonus(self, user_id: int, amount: int, description: str) -> TransactionRead:
		entry = self.run_in_transaction(
			self.db,
			lambda: self.record_credit(user_id, amount, TransactionType.BONUS, description),
		)
		self.log_operation("bonus", user_id=user_id, amount=amount)
		return TransactionRead.from_entry(entry)

	# ------------------------------------------------------------------

	def _check_amount(self, amount: int) -> None:
		if not isinstance(amount, int) or amount <= 0:
			raise ValidationError("amount", "must be a positive integer", correlation_id=self.correlation_id)

	def _append(
		self,
		user_id: int,
		transaction_type: TransactionType,
		amount: int,
		balance_before: int,
		balance_after: int,
		description: str,
		**metadata,
	) -> CreditTransaction:
		fields = {
			"user_id": user_id,
			"type": transaction_type.value,
			"amount": amount,
			"balance_before": balance_before,
			"balance_after": balance_after,
			"status": TransactionStatus.COMPLETED.value,
			"description": description,
			"payment_method": metadata.pop("payment_method", PaymentMethod.SYSTEM.value),
			"processed_at": datetime.now(timezone.utc),
		}
		fields.update(metadata)
		entry = self.transaction_repo.create(fields)
		self.log_operation(
			"ledger_entry",
			user_id=user_id,
			transaction_type=transaction_type.value,
			amount=amount,
			balance_after=balance_after,
			job_id=metadata.get("job_id"),
		)
		return entry
