"""
Submission gateway: validate a URL, derive its job id and decide whether a
pipeline run is needed.

Submissions for the same job id are serialized with a per-id lock, so two
requests racing on one URL observe each other's state and at most one run is
scheduled.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict

from core.job_state import JobStatus
from core.queue import JobQueue, QueueSaturated
from core.stores import JobStore
from core.url_parser import derive_job_id, validate_submission_url

logger = logging.getLogger(__name__)

QUEUE_FULL_MESSAGE = "Job queue is full, please submit again later"


@dataclass
class Submission:
    job_id: str
    status: JobStatus
    scheduled: bool


class SubmissionGateway:
    """Entry point for new analysis requests."""

    def __init__(self, store: JobStore, queue: JobQueue):
        self.store = store
        self.queue = queue
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Counter = Counter()

    @asynccontextmanager
    async def _job_lock(self, job_id: str):
        """Hold the per-id lock, dropping it once nobody else is waiting."""
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._waiters[job_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[job_id] -= 1
            if not self._waiters[job_id]:
                del self._waiters[job_id]
                del self._locks[job_id]

    async def submit(self, url: str) -> Submission:
        """
        Accept a URL and return the job that covers it.

        Raises:
            InvalidInput: the URL is empty or not a recognized video URL
            QueueSaturated: a new run is needed but the queue is full
        """
        url = validate_submission_url(url)
        job_id = derive_job_id(url)

        async with self._job_lock(job_id):
            job = await self.store.get_job(job_id)

            if job is not None:
                if job.status == JobStatus.COMPLETED and await self.store.has_analysis(job_id):
                    logger.info(f"Reusing completed job {job_id}")
                    return Submission(job_id, job.status, scheduled=False)
                if job.status == JobStatus.RUNNING:
                    logger.info(f"Job {job_id} already running")
                    return Submission(job_id, job.status, scheduled=False)
                if job.status == JobStatus.PENDING:
                    # A PENDING job missing from the queue was lost by a restart
                    scheduled = False if self.queue.is_in_flight(job_id) else self.queue.submit(job_id, job.url)
                    return Submission(job_id, job.status, scheduled=scheduled)

            job = await self.store.reset_job_pending(job_id, url)

            try:
                scheduled = self.queue.submit(job_id, url)
            except QueueSaturated:
                await self.store.transition(job_id, JobStatus.PENDING, JobStatus.FAILED, QUEUE_FULL_MESSAGE)
                raise

            logger.info(f"Accepted job {job_id} for {url}")
            return Submission(job_id, job.status, scheduled=scheduled)
