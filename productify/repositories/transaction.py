"""Credit ledger entry repository."""

from datetime import datetime
from typing import Optional, List, Tuple
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from productify.repositories.base import BaseRepository
from productify.db.models.transaction import CreditTransaction
from productify.schemas.transaction import CREDIT_TYPES, TransactionStatus


class TransactionRepository(BaseRepository[CreditTransaction]):

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, CreditTransaction, correlation_id)

	def get_by_job_and_type(self, job_id: str, transaction_type: str) -> Optional[CreditTransaction]:
		return (
			self.db.query(CreditTransaction)
			.filter(CreditTransaction.job_id == job_id, CreditTransaction.type == transaction_type)
			.first()
		)

	def list_for_job(self, job_id: str) -> List[CreditTransaction]:
		return (
			self.db.query(CreditTransaction)
			.filter(CreditTransaction.job_id == job_id)
			.order_by(CreditTransaction.id)
			.all()
		)

	def list_for_user(
		self,
		user_id: int,
		skip: int = 0,
		limit: int = 50,
		transaction_type: Optional[str] = None,
		status: Optional[str] = None,
		since: Optional[datetime] = None,
	) -> Tuple[List[CreditTransaction], int]:
		"""Newest first, with the total count for the same filters."""
		query = self.db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
		if transaction_type:
			query = query.filter(CreditTransaction.type == transaction_type)
		if status:
			query = query.filter(CreditTransaction.status == status)
		if since:
			query = query.filter(CreditTransaction.created_at >= since)

		total = query.count()
		rows = query.order_by(CreditTransaction.id.desc()).offset(skip).limit(limit).all()
		self._log_operation("list_for_user", user_id=user_id, total=total, returned=len(rows))
		return rows, total

	def signed_sum(self, user_id: int) -> int:
		"""Sum of completed entries, credits positive and debits negative."""
		signed = case(
			(CreditTransaction.type.in_([t.value for t in CREDIT_TYPES]), CreditTransaction.amount),
			else_=-CreditTransaction.amount,
		)
		stmt = select(func.coalesce(func.sum(signed), 0)).where(
			CreditTransaction.user_id == user_id,
			CreditTransaction.status == TransactionStatus.COMPLETED.value,
		)
		return int(self.db.execute(stmt).scalar_one())

	def latest_completed(self, user_id: int) -> Optional[CreditTransaction]:
		return (
			self.db.query(CreditTransaction)
			.filter(
				CreditTransaction.user_id == user_id,
				CreditTransaction.status == TransactionStatus.COMPLETED.value,
			)
			.order_by(CreditTransaction.id.desc())
			.first()
		)
