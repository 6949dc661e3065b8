# Import all models so Base.metadata and relationship() strings resolve
from productify.db.base_class import Base  # noqa: F401
from productify.db.models.user import User  # noqa: F401
from productify.db.models.job import Job  # noqa: F401
from productify.db.models.job_item import JobItem  # noqa: F401
from productify.db.models.transaction import CreditTransaction  # noqa: F401
from productify.db.models.queue_entry import QueueEntry  # noqa: F401
from productify.db.models.queue_state import QueueState  # noqa: F401
from productify.db.models.request_log import RequestLog  # noqa: F401
