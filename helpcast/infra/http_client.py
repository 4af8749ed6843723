# helpcast/infra/http_client.py
"""
Long-lived aiohttp sessions, one per outbound profile.

Sessions are created on first use and reused so keep-alive connections
survive between dispatch passes.  ``close_all_sessions()`` runs once at
shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import aiohttp

from helpcast.config import settings
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    total_timeout: Callable[[], float]
    connect_timeout: float
    pool_limit: int


# total timeout is read lazily so tests and env overrides apply
PROFILES: dict[str, SessionProfile] = {
    "push": SessionProfile(
        total_timeout=lambda: settings.push_timeout_seconds,
        connect_timeout=5.0,
        pool_limit=20,
    ),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def get_session(profile: str) -> aiohttp.ClientSession:
    """Open (or reuse) the session for ``profile``; KeyError for unknown names."""
    conf = PROFILES[profile]
    session = _sessions.get(profile)
    if session is not None and not session.closed:
        return session

    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=conf.total_timeout(), connect=conf.connect_timeout),
        connector=aiohttp.TCPConnector(limit=conf.pool_limit, keepalive_timeout=30),
    )
    _sessions[profile] = session
    logger.debug(f"HTTP session opened: profile={profile} limit={conf.pool_limit}")
    return session


def get_push_session() -> aiohttp.ClientSession:
    return get_session("push")


async def close_all_sessions() -> None:
    while _sessions:
        profile, session = _sessions.popitem()
        if not session.closed:
            await session.close()
        logger.debug(f"HTTP session closed: profile={profile}")
