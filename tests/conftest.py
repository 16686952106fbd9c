"""
Pytest configuration and fixtures for pg_jobqueue tests.
"""

import asyncio
import os
from typing import AsyncGenerator

import asyncpg
import pytest

from pg_jobqueue import InMemoryJobStore, Job, JobWorker, PostgresJobStore


# Database connection parameters from environment
DB_HOST = os.getenv("PGHOST", "localhost")
DB_PORT = int(os.getenv("PGPORT", "5432"))
DB_USER = os.getenv("PGUSER", "jobqueue")
DB_PASSWORD = os.getenv("PGPASSWORD", "jobqueue")
DB_NAME = os.getenv("PGDATABASE", "jobqueue")


@pytest.fixture
async def db_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a database connection pool, skipping the test if PostgreSQL is unreachable."""
    try:
        pool = await asyncpg.create_pool(
            host=DB_HOST,
            port=DB_PORT,
            user=DB_USER,
            password=DB_PASSWORD,
            database=DB_NAME,
            min_size=1,
            max_size=10,
            timeout=5,
        )
    except (OSError, asyncpg.PostgresError, asyncio.TimeoutError) as e:
        pytest.skip(f"PostgreSQL not available: {e}")
    yield pool
    await pool.close()


@pytest.fixture
async def pg_store(db_pool: asyncpg.Pool) -> AsyncGenerator[PostgresJobStore, None]:
    """
    PostgresJobStore on a freshly created jobs table, dropped again afterwards.
    """
    await db_pool.execute("DROP TABLE IF EXISTS jobs CASCADE")
    store = PostgresJobStore(db_pool)
    await store.initialize()

    yield store

    await db_pool.execute("DROP TABLE IF EXISTS jobs CASCADE")


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
async def worker(memory_store: InMemoryJobStore) -> AsyncGenerator[JobWorker, None]:
    """
    Worker on the in-memory store with instant simulated work. Not started.
    """
    job_worker = JobWorker(memory_store, queue_size=10, num_workers=2, work_seconds=0)

    yield job_worker

    job_worker.stop()
    await job_worker.wait_closed(timeout=1)


@pytest.fixture
def insert_job(memory_store: InMemoryJobStore):
    """Insert a pending job into the in-memory store and return its id."""
    async def _insert(payload=None, job_type: str = "test", store=None):
        target = store or memory_store
        return await target.insert(Job(type=job_type, payload=payload or {"fail": False}))
    return _insert


@pytest.fixture
def wait_until():
    """
    Poll a store until a job matches a predicate.

    Fails the test with the last seen record if the timeout expires.
    """
    async def _wait(store, job_id: str, predicate, timeout: float = 5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            job = await store.find_by_id(job_id)
            if job is not None and predicate(job):
                return job
            if loop.time() > deadline:
                raise AssertionError(f"Job {job_id} did not reach expected state, last seen: {job}")
            await asyncio.sleep(0.01)
    return _wait
