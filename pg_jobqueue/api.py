import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import asyncpg
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .errors import InvalidJobError, JobNotFoundError
from .service import JobService
from .store import JobStore, PostgresJobStore
from .worker import Executor, JobWorker

logger = logging.getLogger(__name__)

# Errors a store call can surface to a request handler
STORE_ERRORS = (TimeoutError, asyncpg.PostgresError, OSError)


class CreateJobRequest(BaseModel):
    type: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


def create_app(settings: Optional[Settings] = None,
               store: Optional[JobStore] = None,
               executor: Optional[Executor] = None) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        settings: Service settings (read from the environment if None)
        store: Job store to use; a PostgresJobStore on a new asyncpg pool
               is created from settings.database_url if None. Only a store
               created here is closed on shutdown
        executor: Unit of work passed to the JobWorker (simulated if None)
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        job_store = store
        owns_store = job_store is None
        if owns_store:
            db_pool = await asyncpg.create_pool(dsn=settings.database_url)
            job_store = PostgresJobStore(db_pool)
            logger.info("Connected to PostgreSQL")
        await job_store.initialize()

        worker = JobWorker(
            job_store,
            settings.queue_size,
            settings.num_workers,
            executor=executor,
            job_timeout=settings.job_timeout,
            work_seconds=settings.work_seconds,
        )
        app.state.worker = worker
        app.state.service = JobService(job_store, worker, timeout=settings.request_timeout)
        worker.start()
        try:
            yield
        finally:
            worker.stop()
            await worker.wait_closed(timeout=settings.job_timeout)
            if owns_store:
                await job_store.close()
            logger.info("Server stopped")

    app = FastAPI(title="PG Job Queue", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.post("/jobs", status_code=201)
    async def create_job(body: CreateJobRequest, request: Request):
        service: JobService = request.app.state.service
        try:
            job = await service.create_job(body.type, body.payload)
        except InvalidJobError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except STORE_ERRORS as e:
            logger.error(f"Failed to insert job: {e}")
            raise HTTPException(status_code=500, detail="Failed to create job")
        return job.to_dict()

    @app.get("/jobs")
    async def get_jobs(request: Request, id: Optional[str] = None):
        service: JobService = request.app.state.service

        if id is None:
            try:
                jobs = await service.list_jobs()
            except STORE_ERRORS as e:
                logger.error(f"Failed to query jobs: {e}")
                raise HTTPException(status_code=500, detail="Failed to retrieve jobs")
            return [job.to_dict() for job in jobs]

        try:
            uuid.UUID(id)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid job ID format")

        try:
            job = await service.get_job(id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Job not found")
        except STORE_ERRORS as e:
            logger.error(f"Failed to find job: {e}")
            raise HTTPException(status_code=500, detail="Failed to retrieve job")
        return job.to_dict()

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app
