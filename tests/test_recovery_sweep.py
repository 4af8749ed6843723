# tests/test_recovery_sweep.py
"""Tests for lost-dispatch replay (helpcast/infra/recovery_sweep.py)"""
from __future__ import annotations

import asyncio

import pytest

from helpcast.core.broadcast.dispatch import DISPATCH_JOB
from helpcast.infra.job_worker import BackgroundWorkerPool
from helpcast.infra.metrics import get_metrics_collector
from helpcast.infra.recovery_sweep import DispatchRecoverySweeper

from tests.conftest import FakeRequestStore, make_plan


def _pool(received: list) -> BackgroundWorkerPool:
    async def handler(payload):
        received.append(payload["request_id"])

    pool = BackgroundWorkerPool(size=1)
    pool.register(DISPATCH_JOB, handler)
    return pool


class TestSweepOnce:
    @pytest.mark.asyncio
    async def test_resubmits_claimed_requests(self):
        requests = FakeRequestStore()
        requests.stale = [make_plan(request_id="r1"), make_plan(request_id="r2")]
        received: list[str] = []
        pool = _pool(received)
        sweeper = DispatchRecoverySweeper(requests, pool, grace_seconds=300, batch_size=20)

        count = await sweeper.sweep_once()
        await pool.start()
        await asyncio.wait_for(pool.join(), timeout=2)
        await pool.stop()

        assert count == 2
        assert received == ["r1", "r2"]
        assert requests.claim_calls == [(300, 20)]
        assert get_metrics_collector().get_counter("dispatch_replays_total") == 2

    @pytest.mark.asyncio
    async def test_each_request_replayed_at_most_once(self):
        requests = FakeRequestStore()
        requests.stale = [make_plan(request_id="r1")]
        sweeper = DispatchRecoverySweeper(requests, _pool([]))

        first = await sweeper.sweep_once()
        second = await sweeper.sweep_once()

        assert (first, second) == (1, 0)

    @pytest.mark.asyncio
    async def test_batch_size_limits_claim(self):
        requests = FakeRequestStore()
        requests.stale = [make_plan(request_id=f"r{i}") for i in range(5)]
        sweeper = DispatchRecoverySweeper(requests, _pool([]), batch_size=2)

        assert await sweeper.sweep_once() == 2
        assert len(requests.stale) == 3

    @pytest.mark.asyncio
    async def test_full_queue_counts_nothing(self):
        requests = FakeRequestStore()
        requests.stale = [make_plan(request_id="r1"), make_plan(request_id="r2")]
        pool = BackgroundWorkerPool(size=1, max_queue=1)
        pool.register(DISPATCH_JOB, lambda payload: asyncio.sleep(0))

        count = await DispatchRecoverySweeper(requests, pool).sweep_once()

        assert count == 1
        assert get_metrics_collector().get_counter("dispatch_replays_total") == 1


class TestSweepLoop:
    @pytest.mark.asyncio
    async def test_loop_survives_store_errors(self):
        class FlakyStore(FakeRequestStore):
            calls = 0

            async def claim_stale_pending(self, older_than_seconds, limit):
                FlakyStore.calls += 1
                raise ConnectionError("db down")

        sweeper = DispatchRecoverySweeper(FlakyStore(), _pool([]), interval=0.01)
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert FlakyStore.calls >= 2
        assert get_metrics_collector().get_counter("recovery_sweep_errors") >= 2
