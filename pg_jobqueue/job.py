"""
Job record and status definitions for PG Job Queue.

A job is persisted before its identifier ever reaches the in-memory queue,
and only the worker mutates status, retry_count and updated_at afterwards.
"""

import datetime
import json
from dataclasses import dataclass, field
from datetime import UTC
from enum import Enum
from typing import Any, Dict, Mapping

# Failed executions allowed before a job stays failed for good
MAX_RETRIES = 3


class JobStatus(Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'

    def __str__(self) -> str:
        return self.value


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


@dataclass
class Job:
    """
    A background job as stored in the persistent store.

    Attributes:
        id: Unique identifier assigned by the store on insert (empty until then)
        type: Free-form classification, opaque to the worker
        payload: String-keyed mapping, opaque except to the execution hook
        status: Current lifecycle status
        retry_count: Number of failed execution attempts so far
        created_at: Insert time (UTC)
        updated_at: Time of the last status-affecting write (UTC)
    """
    type: str
    payload: Dict[str, Any]
    id: str = ""
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= MAX_RETRIES

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Job':
        """
        Build a Job from a store row (asyncpg Record or plain mapping).

        Payload may arrive either decoded or as JSON text, depending on
        whether a JSONB codec is registered on the connection.
        """
        payload = record['payload']
        if isinstance(payload, str):
            payload = json.loads(payload)
        return cls(
            id=str(record['id']),
            type=record['type'],
            payload=dict(payload or {}),
            status=JobStatus(record['status']),
            retry_count=record['retry_count'] or 0,
            created_at=record['created_at'],
            updated_at=record['updated_at'],
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation used by the HTTP layer."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "retryCount": self.retry_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
