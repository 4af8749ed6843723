# helpcast/infra/recovery_sweep.py
"""
Periodic replay of lost dispatch passes.

A request whose dispatch pass never settled (process restart, dropped
job) keeps dispatch_state='pending'.  The sweeper claims such rows once
they are older than the grace period and resubmits them to the worker
pool.  Claiming consumes the request's only replay, so helpers are never
notified more than twice for the same request, and usually once.
"""
from __future__ import annotations

import asyncio

from helpcast.core.broadcast.dispatch import DISPATCH_JOB
from helpcast.core.broadcast.ports import RequestStore
from helpcast.infra.job_worker import BackgroundWorkerPool
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics, inc_counter

logger = get_logger(__name__)


class DispatchRecoverySweeper:
    """
    Usage:
        sweeper = DispatchRecoverySweeper(requests, pool, interval=60, grace=300)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        requests: RequestStore,
        pool: BackgroundWorkerPool,
        *,
        interval: float = 60.0,
        grace_seconds: int = 300,
        batch_size: int = 20,
    ):
        self._requests = requests
        self._pool = pool
        self._interval = interval
        self._grace_seconds = grace_seconds
        self._batch_size = batch_size
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Start the sweep loop as an asyncio task."""
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="dispatch_recovery_sweep")
        self._task.add_done_callback(self._on_task_done)
        logger.info(
            f"Dispatch recovery sweep started: interval={self._interval}s, "
            f"grace={self._grace_seconds}s, batch={self._batch_size}",
        )

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Dispatch recovery sweep stopped")

    async def sweep_once(self) -> int:
        """Claim stale pending requests and resubmit them. Returns the resubmitted count."""
        plans = await self._requests.claim_stale_pending(self._grace_seconds, self._batch_size)
        resubmitted = 0
        for plan in plans:
            job_id = self._pool.submit(DISPATCH_JOB, plan.to_payload())
            if job_id is None:
                logger.error(
                    f"Replay could not be queued: request={plan.request_id[:8]}",
                    extra={"service_request_id": plan.request_id},
                )
                continue
            resubmitted += 1
            AppMetrics.dispatch_replayed()
            logger.warning(
                f"Replaying lost dispatch pass: request={plan.request_id[:8]}",
                extra={"service_request_id": plan.request_id, "job_id": job_id},
            )
        return resubmitted

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.sweep_once()
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Recovery sweep error: {exc}", exc_info=True)
                inc_counter("recovery_sweep_errors")
                await asyncio.sleep(self._interval * 2)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        """Log unexpected sweeper death."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(
                f"Recovery sweep died unexpectedly: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )
