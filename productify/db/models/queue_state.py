from sqlalchemy import Column, String, Boolean

from productify.db.base_class import Base


class QueueState(Base):
	__tablename__ = "queue_states"

	queue_name = Column(String(64), primary_key=True)
	paused = Column(Boolean, nullable=False, default=False)
