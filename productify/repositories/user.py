"""User repository, including the conditional balance updates the ledger relies on."""

from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from productify.repositories.base import BaseRepository
from productify.db.models.user import User


class UserRepository(BaseRepository[User]):

	def __init__(self, db: Session, correlation_id: Optional[str] = None):
		super().__init__(db, User, correlation_id)

	def get_balance(self, user_id: int) -> Optional[int]:
		"""Read the cached balance straight from the row, bypassing the identity map."""
		return self.db.execute(select(User.credits).where(User.id == user_id)).scalar_one_or_none()

	def try_decrement_credits(self, user_id: int, amount: int) -> bool:
		"""Atomically subtract `amount` if the balance covers it.

		A single conditional UPDATE: concurrent callers cannot both pass the check.
		"""
		stmt = (
			update(User)
			.where(User.id == user_id, User.credits >= amount)
			.values(credits=User.credits - amount)
			.execution_options(synchronize_session=False)
		)
		result = self.db.execute(stmt)
		applied = result.rowcount == 1
		self._log_operation("try_decrement_credits", user_id=user_id, amount=amount, applied=applied)
		return applied

	def increment_credits(self, user_id: int, amount: int) -> bool:
		stmt = (
			update(User)
			.where(User.id == user_id)
			.values(credits=User.credits + amount)
			.execution_options(synchronize_session=False)
		)
		result = self.db.execute(stmt)
		applied = result.rowcount == 1
		self._log_operation("increment_credits", user_id=user_id, amount=amount, applied=applied)
		return applied
