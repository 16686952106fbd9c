"""
Persistent job stores for PG Job Queue.

The worker only talks to the abstract JobStore contract:
- insert: persist a new job and return its identifier
- find_by_id: fetch the authoritative record (None when unknown)
- update_fields: partial update of status / retry_count / updated_at
- list_recent: newest jobs first

Backends:
- PostgresJobStore: asyncpg pool, table ``jobs`` (production)
- InMemoryJobStore: dict guarded by an asyncio.Lock (tests, single process)
"""

import asyncio
import copy
import itertools
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Dict, List, Optional

import asyncpg

from .errors import StoreWriteError
from .job import Job, JobStatus, utcnow

logger = logging.getLogger(__name__)

# Fields the worker is allowed to change after insert
UPDATABLE_FIELDS = frozenset({'status', 'retry_count', 'updated_at'})

DEFAULT_LIST_LIMIT = 50


def _normalize_fields(job_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a partial update and stamp updated_at on status changes."""
    if not fields:
        raise ValueError(f"No fields given for update of job {job_id}")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields {sorted(unknown)} cannot be updated "
                         f"(allowed: {sorted(UPDATABLE_FIELDS)})")

    normalized = dict(fields)
    if 'status' in normalized:
        normalized['status'] = JobStatus(normalized['status'])
        normalized.setdefault('updated_at', utcnow())
    return normalized


class JobStore(ABC):
    """Abstract repository over job records."""

    async def initialize(self) -> None:
        """Prepare the backend (create schema etc.)."""
        pass

    @abstractmethod
    async def insert(self, job: Job) -> str:
        """Persist a new job and return its assigned identifier."""

    @abstractmethod
    async def find_by_id(self, job_id: str) -> Optional[Job]:
        """Return the job with this identifier, or None."""

    @abstractmethod
    async def update_fields(self, job_id: str, **fields) -> None:
        """
        Partially update a job.

        Raises:
            StoreWriteError: the write failed or no job matched job_id
            ValueError: a field outside UPDATABLE_FIELDS was given
        """

    @abstractmethod
    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
        """Return at most ``limit`` jobs ordered by created_at, newest first."""

    async def close(self) -> None:
        pass


class PostgresJobStore(JobStore):
    """asyncpg-backed job store."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def initialize(self) -> None:
        await self._execute_with_retry("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
                type TEXT NOT NULL,
                payload JSONB NOT NULL DEFAULT '{}'::jsonb,
                status TEXT NOT NULL DEFAULT 'pending',
                retry_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                seq BIGSERIAL
            );
        """)

        # Tables created before the insertion sequence existed
        await self._execute_with_retry("""
            ALTER TABLE jobs ADD COLUMN IF NOT EXISTS seq BIGSERIAL;
        """)

        await self._execute_with_retry("""
            CREATE INDEX IF NOT EXISTS idx_jobs_created_at_seq
            ON jobs(created_at DESC, seq DESC);
        """)
        logger.debug("Database initialized")

    async def _execute_with_retry(self, query: str, *args, max_retries: int = 3):
        """Execute a schema query, retrying transient failures with backoff"""
        last_exception = None

        for attempt in range(max_retries):
            try:
                return await self.db_pool.execute(query, *args)
            except (asyncpg.PostgresError, OSError) as e:
                last_exception = e
                if attempt < max_retries - 1:
                    delay = (2 ** attempt) * 0.1  # 0.1s, 0.2s, 0.4s
                    logger.warning(f"Database operation failed (attempt {attempt + 1}/{max_retries}), "
                                   f"retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Database operation failed permanently after {max_retries} attempts: {e}")

        raise last_exception

    async def insert(self, job: Job) -> str:
        row = await self.db_pool.fetchrow("""
            INSERT INTO jobs (type, payload, status, retry_count, created_at, updated_at)
            VALUES ($1, $2::jsonb, $3, $4, $5, $6)
            RETURNING id;
        """, job.type, json.dumps(job.payload), job.status.value, job.retry_count,
            job.created_at, job.updated_at)

        job_id = row['id']
        logger.debug(f"Inserted job {job_id} ({job.type})")
        return job_id

    async def find_by_id(self, job_id: str) -> Optional[Job]:
        row = await self.db_pool.fetchrow("""
            SELECT id, type, payload::text AS payload, status, retry_count, created_at, updated_at
            FROM jobs
            WHERE id = $1;
        """, job_id)
        return Job.from_record(row) if row else None

    async def update_fields(self, job_id: str, **fields) -> None:
        fields = _normalize_fields(job_id, fields)

        # Column names come from UPDATABLE_FIELDS only, values are bound
        assignments = []
        values = []
        for position, (column, value) in enumerate(sorted(fields.items()), start=2):
            assignments.append(f"{column} = ${position}")
            values.append(value.value if isinstance(value, JobStatus) else value)

        try:
            result = await self.db_pool.fetch(f"""
                UPDATE jobs
                SET {', '.join(assignments)}
                WHERE id = $1
                RETURNING id;
            """, job_id, *values)
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreWriteError(job_id, str(e)) from e

        if not result:
            raise StoreWriteError(job_id, "no such job")

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
        rows = await self.db_pool.fetch("""
            SELECT id, type, payload::text AS payload, status, retry_count, created_at, updated_at
            FROM jobs
            ORDER BY created_at DESC, seq DESC
            LIMIT $1;
        """, limit)
        return [Job.from_record(row) for row in rows]

    async def close(self) -> None:
        await self.db_pool.close()


class InMemoryJobStore(JobStore):
    """
    Process-local job store with the same contract as PostgresJobStore.

    Records are copied in and out so callers never share mutable state
    with the store.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._insert_order: Dict[str, int] = {}
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()

    async def insert(self, job: Job) -> str:
        async with self._lock:
            job_id = str(uuid.uuid4())
            self._jobs[job_id] = replace(job, id=job_id, payload=copy.deepcopy(job.payload))
            self._insert_order[job_id] = next(self._sequence)
        logger.debug(f"Inserted job {job_id} ({job.type})")
        return job_id

    async def find_by_id(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return replace(job, payload=copy.deepcopy(job.payload))

    async def update_fields(self, job_id: str, **fields) -> None:
        fields = _normalize_fields(job_id, fields)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise StoreWriteError(job_id, "no such job")
            self._jobs[job_id] = replace(job, **fields)

    async def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Job]:
        async with self._lock:
            ordered = sorted(
                self._jobs.values(),
                key=lambda job: (job.created_at, self._insert_order[job.id]),
                reverse=True,
            )
            return [replace(job, payload=copy.deepcopy(job.payload)) for job in ordered[:limit]]
