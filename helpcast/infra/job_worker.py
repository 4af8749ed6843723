# helpcast/infra/job_worker.py
"""
In-process async worker pool for post-response background work.

Jobs are submitted without awaiting them, queued in memory, and executed
by a fixed number of worker tasks.  Each job runs in isolation: a failing
handler is logged and counted, and never affects other jobs.  There is no
retry; lost work (process death) is recovered by the dispatch recovery
sweep, which reads the dispatch-pending marker from the database.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from helpcast.core.broadcast.dispatch import DISPATCH_JOB, MEDIA_JOB
from helpcast.core.broadcast.domain import DispatchPlan
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import inc_counter

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Job:
    """A unit of background work."""

    job_type: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BackgroundWorkerPool:
    """
    Usage:
        pool = BackgroundWorkerPool(size=4)
        pool.register("broadcast_dispatch", dispatcher.handle_dispatch_job)
        await pool.start()
        pool.submit("broadcast_dispatch", plan.to_payload())
        ...
        await pool.stop()
    """

    def __init__(
        self,
        *,
        size: int = 4,
        max_queue: int = 1000,
        shutdown_grace: float = 10.0,
    ):
        self._size = size
        self._shutdown_grace = shutdown_grace
        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=max_queue)
        self._handlers: dict[str, JobHandler] = {}
        self._tasks: list[asyncio.Task] = []
        self._running = False

    def register(self, job_type: str, handler: JobHandler) -> None:
        """Register a handler function for a job type."""
        self._handlers[job_type] = handler

    def list_handlers(self) -> list[str]:
        return sorted(self._handlers)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, job_type: str, payload: dict[str, Any]) -> str | None:
        """
        Queue a job without waiting for it.

        Returns the job id, or None when the job was rejected (unknown
        type or full queue).  Never raises.
        """
        if job_type not in self._handlers:
            logger.error(f"No handler registered for job_type={job_type}; job dropped")
            inc_counter("jobs_unknown_type")
            return None

        job = Job(job_type=job_type, payload=payload)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.error(
                f"Worker queue full ({self._queue.maxsize}); dropped job type={job_type}",
            )
            inc_counter("jobs_dropped", job_type=job_type)
            return None

        inc_counter("jobs_submitted", job_type=job_type)
        logger.debug(f"Job submitted: id={job.id[:8]}, type={job_type}")
        return job.id

    async def start(self) -> None:
        """Start worker tasks."""
        if self._running:
            return
        self._running = True
        for idx in range(self._size):
            task = asyncio.create_task(self._worker(idx), name=f"bg_worker_{idx}")
            task.add_done_callback(self._on_task_done)
            self._tasks.append(task)
        logger.info(
            f"Background worker pool started: size={self._size}, handlers={self.list_handlers()}",
        )

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Drain queued jobs for up to the grace period, then cancel workers."""
        if not self._running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning(
                f"Worker pool shutdown grace expired with {self._queue.qsize()} job(s) pending",
            )
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Background worker pool stopped")

    async def _worker(self, idx: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._execute(job)
            finally:
                self._queue.task_done()

    async def _execute(self, job: Job) -> None:
        """Execute a single job via its registered handler."""
        handler = self._handlers[job.job_type]
        try:
            await handler(job.payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            inc_counter("jobs_failed", job_type=job.job_type)
            logger.error(
                f"Job failed: id={job.id[:8]}, type={job.job_type}, error={exc.__class__.__name__}: {exc}",
                exc_info=True,
                extra={"job_id": job.id},
            )
            return

        inc_counter("jobs_completed", job_type=job.job_type)
        logger.debug(f"Job completed: id={job.id[:8]}, type={job.job_type}")

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected worker death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Background worker died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )


class PoolDispatchScheduler:
    """Schedules both background chains on a worker pool as separate jobs."""

    def __init__(self, pool: BackgroundWorkerPool):
        self._pool = pool

    def schedule_dispatch(self, plan: DispatchPlan) -> None:
        self._pool.submit(DISPATCH_JOB, plan.to_payload())

    def schedule_media_sideload(self, plan: DispatchPlan) -> None:
        self._pool.submit(MEDIA_JOB, plan.to_payload())
