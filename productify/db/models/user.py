from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship
from productify.db.base_class import TimestampMixin, Base

class User(Base, TimestampMixin):
	__tablename__ = "users"

	id = Column(Integer, primary_key=True, index=True)
	email = Column(String, unique=True, index=True, nullable=False)
	name = Column(String, nullable=False)
	# Cached balance; the ledger entries are the source of truth
	credits = Column(Integer, nullable=False, default=0)
	is_active = Column(Boolean, default=True)

	jobs = relationship("Job", back_populates="user")
	transactions = relationship("CreditTransaction", back_populates="user")
