import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from .job import MAX_RETRIES, Job, JobStatus, utcnow
from .queue import JobQueue
from .store import JobStore

logger = logging.getLogger(__name__)

# Returns True on success, False on failure. May be sync or async; sync
# executors run in a worker thread.
Executor = Callable[[Job], Union[bool, Awaitable[bool]]]


class JobWorker:
    DEFAULT_QUEUE_SIZE = 100
    DEFAULT_NUM_WORKERS = 2
    DEFAULT_JOB_TIMEOUT = 30.0   # seconds, covers fetch + all writes of one attempt
    DEFAULT_WORK_SECONDS = 2.0   # simulated work duration of the default executor

    def __init__(self,
                 store: JobStore,
                 queue_size: int = DEFAULT_QUEUE_SIZE,
                 num_workers: int = DEFAULT_NUM_WORKERS,
                 *,
                 executor: Optional[Executor] = None,
                 job_timeout: float = DEFAULT_JOB_TIMEOUT,
                 work_seconds: float = DEFAULT_WORK_SECONDS,
                 reset_status_on_retry: bool = False,
                 reject_duplicates: bool = False):
        """
        Pool of asyncio worker tasks fed by a bounded in-memory queue.

        Args:
            store: Persistent store holding the job records
            queue_size: Capacity of the identifier queue; enqueue waits when full
            num_workers: Number of worker tasks started by start()
            executor: Unit of work run for each job (defaults to simulate_execution)
            job_timeout: Deadline in seconds shared by the store calls of one attempt
            work_seconds: Simulated work duration used by simulate_execution
            reset_status_on_retry: Store 'pending' instead of 'failed' while a
                                   retry is queued
            reject_duplicates: Drop a delivery whose identifier is already
                               being processed by another worker
        """
        if num_workers <= 0:
            raise ValueError(f"Number of workers must be positive, got {num_workers}")

        self.store = store
        self.job_queue = JobQueue(queue_size)
        self.num_workers = num_workers
        self.executor = executor or self.simulate_execution
        self.job_timeout = job_timeout
        self.work_seconds = work_seconds
        self.reset_status_on_retry = reset_status_on_retry
        self.reject_duplicates = reject_duplicates

        self.worker_tasks: Set[asyncio.Task] = set()
        self._in_flight: Dict[str, int] = {}

        logger.info(f"Job worker initialized: queue_size={queue_size}, "
                    f"num_workers={num_workers}, job_timeout={job_timeout}s")

    @property
    def active_jobs(self) -> Set[str]:
        """Identifiers currently being processed."""
        return set(self._in_flight)

    def start(self):
        """
        Launch num_workers worker tasks and return immediately.

        Must be called from a running event loop. Calling it twice starts a
        second set of workers on the same queue.
        """
        logger.info(f"Starting {self.num_workers} job worker(s)")

        first = len(self.worker_tasks) + 1
        for number in range(first, first + self.num_workers):
            task = asyncio.create_task(self._worker(number), name=f"job-worker-{number}")
            self.worker_tasks.add(task)
            task.add_done_callback(self.worker_tasks.discard)

    def stop(self):
        """
        Broadcast the stop signal to every worker.

        In-flight jobs are not awaited and identifiers still in the queue are
        not processed.
        """
        logger.info("Stopping all workers...")
        self.job_queue.stop()

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for worker tasks to exit after stop().

        Workers still running after ``timeout`` seconds are cancelled.

        Returns:
            bool: True if every worker exited on its own
        """
        if not self.worker_tasks:
            return True

        tasks = set(self.worker_tasks)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} worker(s) still busy after {timeout}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            return False
        return True

    async def enqueue_job(self, job_id: str):
        """Hand an already-persisted job to the workers, waiting while the queue is full."""
        await self.job_queue.put(job_id)
        logger.debug(f"Enqueued job {job_id} (queue size: {self.job_queue.qsize()})")

    async def _worker(self, number: int):
        logger.info(f"Worker {number} started")

        while True:
            job_id = await self.job_queue.get()
            if job_id is None:
                logger.info(f"Worker {number} stopped")
                return
            await self.process_job(job_id)

    async def process_job(self, job_id: str):
        """
        Drive one delivery of a job through its lifecycle.

        Never raises: store failures, missing records and failing executors
        are logged and end the attempt.
        """
        if self.reject_duplicates and job_id in self._in_flight:
            logger.warning(f"Job {job_id} is already being processed, dropping duplicate delivery")
            return

        self._in_flight[job_id] = self._in_flight.get(job_id, 0) + 1
        try:
            await self._run_attempt(job_id)
        except Exception as e:
            logger.exception(f"Critical error while processing job {job_id}: {e}")
        finally:
            remaining = self._in_flight.pop(job_id) - 1
            if remaining:
                self._in_flight[job_id] = remaining

    async def _run_attempt(self, job_id: str):
        deadline = asyncio.get_running_loop().time() + self.job_timeout

        job = await self._safe_fetch(job_id, deadline)
        if job is None:
            return

        if job.retries_exhausted:
            logger.warning(f"Job {job_id} already used {job.retry_count}/{MAX_RETRIES} retries, "
                           f"dropping delivery")
            return

        if not await self._safe_update(job_id, deadline, "processing",
                                       status=JobStatus.PROCESSING, updated_at=utcnow()):
            return

        logger.info(f"Processing job: {job_id}")

        try:
            succeeded = await self._execute(job)
        except Exception as e:
            logger.exception(f"Job {job_id} raised during execution: {e}")
            succeeded = False

        if succeeded:
            await self._handle_job_success(job_id, deadline)
        else:
            await self._handle_job_failure(job, deadline)

    async def _execute(self, job: Job) -> bool:
        if inspect.iscoroutinefunction(self.executor):
            result = await self.executor(job)
        else:
            result = await asyncio.to_thread(self.executor, job)
            if inspect.isawaitable(result):
                result = await result
        return bool(result)

    async def simulate_execution(self, job: Job) -> bool:
        """Default executor: fail when payload["fail"] is the boolean True, else sleep and succeed."""
        if job.payload.get("fail") is True:
            return False
        await asyncio.sleep(self.work_seconds)
        return True

    async def _handle_job_success(self, job_id: str, deadline: float):
        if await self._safe_update(job_id, deadline, "completed",
                                   status=JobStatus.COMPLETED, updated_at=utcnow()):
            logger.info(f"Completed job: {job_id}")

    async def _handle_job_failure(self, job: Job, deadline: float):
        """Record a failed attempt and re-enqueue while retries remain"""
        job_id = job.id
        retry_count = job.retry_count + 1
        will_retry = retry_count < MAX_RETRIES

        if will_retry and self.reset_status_on_retry:
            status = JobStatus.PENDING
        else:
            status = JobStatus.FAILED

        if not await self._safe_update(job_id, deadline, "failed",
                                       status=status, retry_count=retry_count, updated_at=utcnow()):
            return

        logger.warning(f"Job {job_id} failed (retry count: {retry_count})")

        if will_retry:
            logger.info(f"Re-enqueueing job {job_id} for retry")
            await self.enqueue_job(job_id)
        else:
            logger.error(f"Job {job_id} permanently failed after {retry_count} attempts")

    async def _safe_fetch(self, job_id: str, deadline: float) -> Optional[Job]:
        """Fetch a job, logging instead of raising when it cannot be loaded"""
        try:
            async with asyncio.timeout_at(deadline):
                job = await self.store.find_by_id(job_id)
        except TimeoutError:
            logger.error(f"Timed out fetching job {job_id}")
            return None
        except Exception as e:
            logger.error(f"Failed to find job {job_id}: {e}")
            return None

        if job is None:
            logger.warning(f"Failed to find job {job_id}: not found, dropping delivery")
        return job

    async def _safe_update(self, job_id: str, deadline: float, label: str, **fields) -> bool:
        """Persist a transition; returns False (after logging) if the write failed"""
        try:
            async with asyncio.timeout_at(deadline):
                await self.store.update_fields(job_id, **fields)
            return True
        except TimeoutError:
            logger.error(f"Timed out updating job {job_id} to {label}")
        except Exception as e:
            logger.error(f"Failed to update job {job_id} to {label}: {e}")
        return False
