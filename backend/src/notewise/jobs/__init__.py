"""Background job queue, payloads and handlers."""

from notewise.jobs.queue import JobContext, JobNotFoundError, JobQueue, default_options
from notewise.jobs.schemas import JobKind, JobOptions, JobRecord, JobStatus

__all__ = [
    "JobContext",
    "JobKind",
    "JobNotFoundError",
    "JobOptions",
    "JobQueue",
    "JobRecord",
    "JobStatus",
    "default_options",
]
