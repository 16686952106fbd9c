import asyncio
import logging

import asyncpg

from pg_jobqueue import JobService, JobWorker, PostgresJobStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def create_pool():
    return await asyncpg.create_pool(
        user='jobqueue',
        password='jobqueue',
        database='jobqueue',
        host='localhost',
        port=5432
    )


async def main():
    pool = await create_pool()
    store = PostgresJobStore(pool)
    worker = JobWorker(store, queue_size=100, num_workers=2, work_seconds=1.0)

    try:
        await store.initialize()
        worker.start()
        service = JobService(store, worker)

        ok_job = await service.create_job("email", {"to": "someone@example.com", "fail": False})
        bad_job = await service.create_job("email", {"to": "nobody@example.com", "fail": True})

        # Long enough for the failing job to use up its retries
        await asyncio.sleep(5)

        for job_id in (ok_job.id, bad_job.id):
            job = await service.get_job(job_id)
            logger.info(f"Job {job.id}: status={job.status}, retry_count={job.retry_count}")

    finally:
        worker.stop()
        await worker.wait_closed(timeout=5)
        await pool.close()

if __name__ == "__main__":
    asyncio.run(main())
