class JobQueueError(Exception):
    """Base exception for job queue errors."""
    pass


class InvalidJobError(JobQueueError):
    pass


class JobNotFoundError(JobQueueError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class StoreWriteError(JobQueueError):
    def __init__(self, job_id, reason):
        self.job_id = job_id
        super().__init__(f"Failed to update job {job_id}: {reason}")
