"""
PG Job Queue: a PostgreSQL-backed background job processor.

Jobs are persisted first, then their identifiers travel through a bounded
in-memory queue to a fixed pool of asyncio workers that drive each job
through pending -> processing -> completed / failed with bounded retries.
"""

from .config import Settings
from .errors import InvalidJobError, JobNotFoundError, JobQueueError, StoreWriteError
from .job import MAX_RETRIES, Job, JobStatus
from .queue import JobQueue
from .service import JobService
from .store import InMemoryJobStore, JobStore, PostgresJobStore
from .worker import JobWorker

__all__ = [
    "InMemoryJobStore",
    "InvalidJobError",
    "Job",
    "JobNotFoundError",
    "JobQueue",
    "JobQueueError",
    "JobService",
    "JobStatus",
    "JobStore",
    "JobWorker",
    "MAX_RETRIES",
    "PostgresJobStore",
    "Settings",
    "StoreWriteError",
]
