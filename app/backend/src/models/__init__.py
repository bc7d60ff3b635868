"""ORM models exposed for easy imports."""

from .callback import Callback
from .job import Job
from .job_history import JobHistory
from .outbox_event import OutboxEvent

__all__ = [
    "Callback",
    "Job",
    "JobHistory",
    "OutboxEvent",
]
