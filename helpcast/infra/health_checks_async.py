# helpcast/infra/health_checks_async.py
"""
Health checks behind /ready (critical only) and /health/detailed (all).

A critical check that fails makes the service unhealthy; a non-critical
one can at most degrade it.
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

from helpcast.infra.db_async import get_pool, pool_stats
from helpcast.infra.job_worker import BackgroundWorkerPool
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = (
    "service_categories",
    "service_requests",
    "helper_profiles",
    "broadcast_notifications",
    "notifications",
)

SLOW_DATABASE_SECONDS = 1.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class; ``check`` returns a dict with at least ``status`` and ``details``."""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        raise NotImplementedError


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Database reachable and schema migrated"""

    def __init__(self):
        super().__init__("database", critical=True)

    async def check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT t AS name FROM unnest($1::text[]) AS t WHERE to_regclass(t) IS NULL",
                    list(REQUIRED_TABLES),
                )
        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Database connection failed",
                "error": str(exc)[:200],
            }

        elapsed = time.perf_counter() - started
        missing = [row["name"] for row in rows]
        if missing:
            return {
                "status": HealthStatus.UNHEALTHY,
                "details": "Missing required tables",
                "error": f"Missing: {', '.join(missing)}",
            }

        status = HealthStatus.DEGRADED if elapsed > SLOW_DATABASE_SECONDS else HealthStatus.HEALTHY
        return {
            "status": status,
            "details": "Slow database response" if status == HealthStatus.DEGRADED else "Database operational",
            "response_time": round(elapsed, 4),
            "pool": pool_stats(),
        }


class AsyncDispatchBacklogHealthCheck(AsyncHealthCheck):
    """Requests whose dispatch pass has not settled; degraded once any is stale"""

    def __init__(self, stale_after_seconds: int = 300):
        super().__init__("dispatch_backlog", critical=False)
        self.stale_after_seconds = stale_after_seconds

    async def check(self) -> Dict[str, Any]:
        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT
                      count(*) FILTER (WHERE dispatch_state = 'pending') AS pending,
                      count(*) FILTER (
                        WHERE dispatch_state = 'pending'
                          AND created_at < now() - make_interval(secs => $1)
                      ) AS stale,
                      count(*) FILTER (
                        WHERE dispatch_state = 'failed'
                          AND created_at > now() - interval '1 hour'
                      ) AS failed_1h
                    FROM service_requests
                    """,
                    float(self.stale_after_seconds),
                )
        except Exception as exc:
            logger.error("Dispatch backlog health check failed", exc_info=True)
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Dispatch backlog check failed",
                "error": str(exc)[:200],
            }

        return {
            "status": HealthStatus.DEGRADED if row["stale"] else HealthStatus.HEALTHY,
            "details": "Dispatch backlog",
            "pending": row["pending"],
            "stale": row["stale"],
            "failed_1h": row["failed_1h"],
        }


class WorkerPoolHealthCheck(AsyncHealthCheck):
    """Background worker pool is running"""

    def __init__(self, pool: BackgroundWorkerPool):
        super().__init__("worker_pool", critical=False)
        self.pool = pool

    async def check(self) -> Dict[str, Any]:
        running = self.pool.running
        return {
            "status": HealthStatus.HEALTHY if running else HealthStatus.DEGRADED,
            "details": "Worker pool running" if running else "Worker pool not running",
            "queued": self.pool.pending,
        }


class StorageHealthCheck(AsyncHealthCheck):
    """Media bucket reachable; media sideloading degrades without it"""

    def __init__(self, storage, timeout: float = 5.0):
        super().__init__("media_storage", critical=False)
        self.storage = storage
        self.timeout = timeout

    async def check(self) -> Dict[str, Any]:
        try:
            await asyncio.wait_for(self.storage.ping(), timeout=self.timeout)
        except Exception as exc:
            logger.warning(f"Media storage health check failed: {exc}")
            return {
                "status": HealthStatus.DEGRADED,
                "details": "Media bucket unreachable",
                "error": str(exc)[:200],
            }
        return {"status": HealthStatus.HEALTHY, "details": "Media bucket reachable"}


class AsyncHealthChecker:
    """Runs a list of checks and folds them into one status"""

    def __init__(self, checks: Optional[list[AsyncHealthCheck]] = None):
        self.checks: list[AsyncHealthCheck] = checks if checks is not None else [
            AsyncDatabaseHealthCheck(),
            AsyncDispatchBacklogHealthCheck(),
        ]

    def add_check(self, check: AsyncHealthCheck) -> None:
        self.checks.append(check)

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        """
        Returns:
            {"status": "healthy" | "degraded" | "unhealthy", "checks": {...}, "timestamp": float}
        """
        results: Dict[str, Any] = {}
        overall = HealthStatus.HEALTHY

        for check in self.checks:
            if not check.critical and not include_non_critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall == HealthStatus.HEALTHY:
                overall = HealthStatus.DEGRADED

        return {"status": overall.value, "checks": results, "timestamp": time.time()}
