"""In-process ingest queue with a bounded worker pool.

Jobs wait in a FIFO deque and run as asyncio tasks, at most `concurrency`
at a time. The deque and the active counter are only touched on the event
loop thread, by enqueue() and by the worker's cleanup, so no lock is needed.
Nothing is persisted: jobs still waiting when the process stops are lost.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

from models import UploadJob

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 2


@dataclass(frozen=True)
class Acceptance:
    accepted: bool
    queue_depth: int

    def as_dict(self) -> dict:
        return {"accepted": self.accepted, "queueDepth": self.queue_depth}


class IngestQueue:
    def __init__(self, process: Callable[[UploadJob], Awaitable[object]],
                 concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._process = process
        self._concurrency = concurrency
        self._waiting: deque[UploadJob] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def depth(self) -> int:
        return len(self._waiting)

    @property
    def waiting(self) -> tuple[str, ...]:
        """Upload ids still waiting, in dequeue order."""
        return tuple(job.upload_id for job in self._waiting)

    def enqueue(self, job: UploadJob) -> Acceptance:
        """Append a job and return immediately. Never blocks."""
        if self._closed:
            logger.warning(f"Queue is shutting down, rejected {job.upload_id}")
            return Acceptance(accepted=False, queue_depth=len(self._waiting))
        self._waiting.append(job)
        self._schedule()
        return Acceptance(accepted=True, queue_depth=len(self._waiting))

    def _schedule(self):
        while not self._closed and self._active < self._concurrency and self._waiting:
            job = self._waiting.popleft()
            self._active += 1
            task = asyncio.create_task(self._run(job), name=f"ingest-{job.upload_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job: UploadJob):
        try:
            await self._process(job)
        except Exception:
            logger.exception(f"Job {job.upload_id} failed, not retrying")
        finally:
            self._active -= 1
            self._schedule()

    async def shutdown(self):
        """Stop accepting, let running jobs finish, drop the ones still waiting."""
        self._closed = True
        dropped = len(self._waiting)
        self._waiting.clear()
        if dropped:
            logger.warning(f"Dropping {dropped} queued job(s) on shutdown")
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} running job(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
