"""
Bounded in-memory hand-off between producers and workers.

Only job identifiers travel through the queue; workers always re-fetch the
authoritative record from the store.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class JobQueue:
    """
    FIFO of job identifiers with backpressure and a broadcast stop signal.

    Args:
        maxsize: Maximum number of buffered identifiers (must be positive)
    """

    def __init__(self, maxsize: int = 100):
        if maxsize <= 0:
            raise ValueError(f"Queue size must be positive, got {maxsize}")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._stop_event = asyncio.Event()

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, job_id: str) -> None:
        """Buffer an identifier, waiting while the queue is full."""
        await self._queue.put(job_id)

    def put_nowait(self, job_id: str) -> None:
        """Buffer an identifier or raise asyncio.QueueFull."""
        self._queue.put_nowait(job_id)

    async def get(self) -> Optional[str]:
        """
        Wait for the next identifier.

        Returns:
            The identifier, or None once stop() has been called. Identifiers
            still buffered at that point stay in the queue. An identifier
            already taken when stop() lands is returned, never put back.
        """
        if self._stop_event.is_set():
            return None

        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not getter.done():
                getter.cancel()

        if getter.done() and not getter.cancelled():
            # Both may be ready at once; like a select, either outcome is fine
            return getter.result()
        return None

    def stop(self) -> None:
        """Signal every waiting and future get() to return None."""
        if not self._stop_event.is_set():
            logger.debug(f"Job queue stopped with {self.qsize()} identifiers buffered")
        self._stop_event.set()
