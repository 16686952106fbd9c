"""
Producer-side operations: create, fetch and list jobs.

A job is always inserted into the store before its identifier is handed to
the worker queue.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .errors import InvalidJobError, JobNotFoundError
from .job import Job
from .store import DEFAULT_LIST_LIMIT, JobStore
from .worker import JobWorker

logger = logging.getLogger(__name__)


class JobService:
    def __init__(self, store: JobStore, worker: JobWorker, timeout: Optional[float] = 5.0):
        """
        Args:
            store: Persistent store shared with the worker
            worker: Worker pool that receives new job identifiers
            timeout: Deadline in seconds for each store call (None = no deadline).
                     Waiting for room in the worker queue is not bounded.
        """
        self.store = store
        self.worker = worker
        self.timeout = timeout

    async def create_job(self, job_type: Optional[str], payload: Optional[Dict[str, Any]]) -> Job:
        """
        Persist a new pending job and enqueue it for processing.

        Raises:
            InvalidJobError: job_type is empty or payload is empty / not a mapping
        """
        if not job_type or not isinstance(job_type, str):
            raise InvalidJobError("Type and payload are required")
        if not payload or not isinstance(payload, dict):
            raise InvalidJobError("Type and payload are required")

        job = Job(type=job_type, payload=payload)
        async with asyncio.timeout(self.timeout):
            job.id = await self.store.insert(job)
        await self.worker.enqueue_job(job.id)

        logger.info(f"Created job {job.id} ({job_type})")
        return job

    async def get_job(self, job_id: str) -> Job:
        async with asyncio.timeout(self.timeout):
            job = await self.store.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
        async with asyncio.timeout(self.timeout):
            return await self.store.list_recent(limit)
