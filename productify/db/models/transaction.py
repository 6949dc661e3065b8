from sqlalchemy import Column, ForeignKey, Integer, String, Text, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from productify.db.base_class import TimestampMixin, Base


class CreditTransaction(Base, TimestampMixin):
	__tablename__ = "credit_transactions"
	__table_args__ = (
		# One debit and at most one refund per job, whatever the redelivery count
		UniqueConstraint("job_id", "type", name="uq_credit_transactions_job_type"),
		Index("ix_credit_transactions_user_created_at", "user_id", "created_at"),
		Index("ix_credit_transactions_user_type", "user_id", "type"),
	)

	id = Column(Integer, primary_key=True, index=True)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	type = Column(String, nullable=False, index=True)
	amount = Column(Integer, nullable=False)
	balance_before = Column(Integer, nullable=False)
	balance_after = Column(Integer, nullable=False)
	status = Column(String, nullable=False, default="completed", index=True)
	description = Column(Text, nullable=False)
	payment_method = Column(String, nullable=False, default="system")
	# Per-type metadata; which of these are set is fixed by `type`
	job_id = Column(String(32), nullable=True, index=True)
	refund_reason = Column(Text, nullable=True)
	order_id = Column(String, nullable=True)
	payment_intent_id = Column(String, nullable=True)
	admin_id = Column(String, nullable=True)
	admin_note = Column(Text, nullable=True)
	processed_at = Column(DateTime(timezone=True), nullable=True)

	user = relationship("User", back_populates="transactions")
