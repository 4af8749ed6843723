# helpcast/infra/timeouts.py
"""
Per-call timeout wrapper for external calls made from background chains.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import inc_counter

logger = get_logger(__name__)

T = TypeVar("T")


class ExternalCallTimeout(TimeoutError):
    """An external call exceeded its time bound."""

    def __init__(self, label: str, seconds: float):
        self.label = label
        self.seconds = seconds
        super().__init__(f"{label} timed out after {seconds:.1f}s")


async def with_timeout(awaitable: Awaitable[T], seconds: float | None, label: str) -> T:
    """
    Await ``awaitable`` for at most ``seconds``.

    ``None`` or a non-positive value disables the bound.  On expiry the
    inner call is cancelled and ``ExternalCallTimeout`` is raised.
    """
    if seconds is None or seconds <= 0:
        return await awaitable

    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        inc_counter("external_call_timeouts_total", call=label)
        logger.warning(f"External call timed out: {label} after {seconds:.1f}s")
        raise ExternalCallTimeout(label, seconds) from exc
