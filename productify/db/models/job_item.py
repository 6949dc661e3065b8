from sqlalchemy import Column, ForeignKey, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from productify.db.base_class import TimestampMixin, Base

class JobItem(Base, TimestampMixin):
	__tablename__ = "job_items"
	__table_args__ = (UniqueConstraint("job_id", "position", name="uq_job_items_position"),)

	id = Column(Integer, primary_key=True, index=True)
	job_id = Column(String(32), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
	position = Column(Integer, nullable=False)
	type = Column(String, nullable=False)
	credits = Column(Integer, nullable=False, default=0)
	config = Column(JSON, nullable=False, default=dict)
	status = Column(String, nullable=False, default="pending")
	result = Column(JSON, nullable=True)
	started_at = Column(DateTime(timezone=True), nullable=True)
	completed_at = Column(DateTime(timezone=True), nullable=True)

	job = relationship("Job", back_populates="items")
