import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, SmallInteger, DateTime, JSON, Index
from sqlalchemy.orm import relationship
from productify.db.base_class import TimestampMixin, Base


def _new_job_id() -> str:
	return uuid.uuid4().hex


class Job(Base, TimestampMixin):
	__tablename__ = "jobs"
	__table_args__ = (
		Index("ix_jobs_user_created_at", "user_id", "created_at"),
		Index("ix_jobs_user_status", "user_id", "status"),
	)

	id = Column(String(32), primary_key=True, default=_new_job_id)
	user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
	status = Column(String, nullable=False, index=True)  # pending, processing, completed, failed
	progress = Column(SmallInteger, nullable=False, default=0)
	pipeline_name = Column(String, nullable=True)
	product_info = Column(JSON, nullable=False)
	original_image = Column(JSON, nullable=False)
	total_credits = Column(Integer, nullable=False)
	credits_spent = Column(Integer, nullable=False, default=0)
	credits_refunded = Column(Integer, nullable=False, default=0)
	started_at = Column(DateTime(timezone=True), nullable=True)
	completed_at = Column(DateTime(timezone=True), nullable=True)
	failed_at = Column(DateTime(timezone=True), nullable=True)
	refunded_at = Column(DateTime(timezone=True), nullable=True)

	user = relationship("User", back_populates="jobs")
	items = relationship(
		"JobItem",
		back_populates="job",
		order_by="JobItem.position",
		cascade="all, delete-orphan",
	)
