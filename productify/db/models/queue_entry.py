from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index
from sqlalchemy.sql import func

from productify.db.base_class import Base


class QueueEntry(Base):
	__tablename__ = "queue_entries"
	__table_args__ = (
		Index("ix_queue_entries_claim", "queue_name", "status", "available_at"),
		Index("ix_queue_entries_finished", "queue_name", "status", "finished_at"),
	)

	id = Column(Integer, primary_key=True, index=True)
	queue_name = Column(String(64), nullable=False)
	payload = Column(JSON, nullable=False)
	status = Column(String(16), nullable=False, default="waiting")  # waiting, active, completed, failed
	attempts = Column(Integer, nullable=False, default=0)
	max_attempts = Column(Integer, nullable=False)
	backoff_delay_ms = Column(Integer, nullable=False)
	remove_on_complete_seconds = Column(Integer, nullable=False)
	remove_on_fail_seconds = Column(Integer, nullable=False)
	available_at = Column(DateTime(timezone=True), nullable=False)
	locked_until = Column(DateTime(timezone=True), nullable=True)
	last_error = Column(Text, nullable=True)
	created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
	finished_at = Column(DateTime(timezone=True), nullable=True)
