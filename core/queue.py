"""
In-process job queue for the analysis pipeline.

A bounded asyncio queue feeds a fixed pool of worker tasks. Each worker hands
(job_id, url) to the pipeline handler and keeps going whatever the outcome;
the handler itself is responsible for recording the job's terminal status.
A job id is never queued twice while it is waiting or running.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Set, Tuple

JobHandler = Callable[[str, str], Awaitable[object]]


class QueueSaturated(Exception):
    """The queue already holds its maximum number of waiting jobs."""


@dataclass
class QueueStats:
    """Queue statistics data structure."""
    queued_jobs: int
    in_flight_jobs: int
    active_workers: int
    max_size: int
    processed_jobs: int
    crashed_jobs: int


class JobQueue:
    """
    Bounded queue with a pool of asyncio worker tasks.

    Features:
    - Fixed worker concurrency
    - Back-pressure through a maximum queue size
    - De-duplication of waiting or running job ids
    - Graceful stop that cancels idle and busy workers
    """

    def __init__(self, handler: JobHandler, concurrency: int = 2, max_size: int = 100):
        """
        Initialize the queue.

        Args:
            handler: Coroutine function called as handler(job_id, url)
            concurrency: Number of worker tasks
            max_size: Maximum number of jobs waiting to start
        """
        self.handler = handler
        self.concurrency = max(concurrency, 1)
        self.max_size = max_size
        self._queue: "asyncio.Queue[Tuple[str, str]]" = asyncio.Queue(maxsize=max_size)
        self._in_flight: Set[str] = set()
        self._workers: List[asyncio.Task] = []
        self._busy = 0
        self.processed_jobs = 0
        self.crashed_jobs = 0

        self.logger = logging.getLogger("queue.JobQueue")
        if not self.logger.handlers:
            handler_ = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler_.setFormatter(formatter)
            self.logger.addHandler(handler_)
            self.logger.setLevel(logging.INFO)

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self.is_running:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(f"worker-{index}"))
            for index in range(self.concurrency)
        ]
        self.logger.info(f"Started {self.concurrency} queue workers (max queued jobs: {self.max_size})")

    async def stop(self) -> None:
        """Cancel all workers and wait for them to exit."""
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.logger.info("Queue workers stopped")

    def is_in_flight(self, job_id: str) -> bool:
        return job_id in self._in_flight

    def submit(self, job_id: str, url: str) -> bool:
        """
        Queue a job for execution.

        Returns:
            True if queued, False if the job id is already waiting or running

        Raises:
            QueueSaturated: the queue is full
        """
        if job_id in self._in_flight:
            self.logger.debug(f"Job {job_id} already queued or running")
            return False
        try:
            self._queue.put_nowait((job_id, url))
        except asyncio.QueueFull:
            raise QueueSaturated(f"Job queue is full ({self.max_size} waiting jobs)") from None
        self._in_flight.add(job_id)
        self.logger.info(f"Queued job {job_id} (waiting: {self._queue.qsize()})")
        return True

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    def get_stats(self) -> QueueStats:
        return QueueStats(
            queued_jobs=self._queue.qsize(),
            in_flight_jobs=len(self._in_flight),
            active_workers=self._busy,
            max_size=self.max_size,
            processed_jobs=self.processed_jobs,
            crashed_jobs=self.crashed_jobs,
        )

    async def _worker_loop(self, worker_id: str) -> None:
        self.logger.debug(f"Queue worker {worker_id} started")
        while True:
            job_id, url = await self._queue.get()
            self._busy += 1
            try:
                await self.handler(job_id, url)
                self.processed_jobs += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.crashed_jobs += 1
                self.logger.error(f"Job {job_id} handler raised: {e}", exc_info=True)
            finally:
                self._busy -= 1
                self._in_flight.discard(job_id)
                self._queue.task_done()

