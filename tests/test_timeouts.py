# tests/test_timeouts.py
"""Tests for helpcast/infra/timeouts.py"""
from __future__ import annotations

import asyncio

import pytest

from helpcast.infra.metrics import get_metrics_collector
from helpcast.infra.timeouts import ExternalCallTimeout, with_timeout


async def _sleep_then(value, delay):
    await asyncio.sleep(delay)
    return value


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_within_bound(self):
        assert await with_timeout(_sleep_then("ok", 0), 1.0, "fast") == "ok"

    @pytest.mark.asyncio
    async def test_raises_on_expiry(self):
        with pytest.raises(ExternalCallTimeout) as exc_info:
            await with_timeout(_sleep_then("late", 1.0), 0.01, "slow_call")

        assert exc_info.value.label == "slow_call"
        assert isinstance(exc_info.value, TimeoutError)
        assert get_metrics_collector().get_counter("external_call_timeouts_total", call="slow_call") == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seconds", [None, 0, -1])
    async def test_non_positive_bound_disables_timeout(self, seconds):
        assert await with_timeout(_sleep_then("ok", 0.01), seconds, "unbounded") == "ok"

    @pytest.mark.asyncio
    async def test_inner_errors_propagate(self):
        async def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await with_timeout(boom(), 1.0, "boom")
