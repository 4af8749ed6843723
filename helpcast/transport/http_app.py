# helpcast/transport/http_app.py
"""
HTTP application for the request broadcast service.

Endpoints:
1. Authenticated: request broadcast creation and its dispatch status
2. Public probes: /health, /ready
3. Internal: /metrics, /health/detailed (METRICS_TOKEN)

Helper discovery, notification fan-out and media migration never run on
the request path; they are queued on the in-process worker pool.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from helpcast.config import settings
from helpcast.core.broadcast import (
    BroadcastDispatcher,
    BroadcastError,
    CategoryResolver,
    EligibilityFilter,
    MediaSideloader,
    NotFoundError,
    NotificationFanout,
    RequestIntakeHandler,
)
from helpcast.core.broadcast.dispatch import DISPATCH_JOB, MEDIA_JOB
from helpcast.core.broadcast.ports import RequestStore
from helpcast.infra.db_async import close_pool, init_pool
from helpcast.infra.health_checks_async import (
    AsyncHealthChecker,
    StorageHealthCheck,
    WorkerPoolHealthCheck,
)
from helpcast.infra.http_client import close_all_sessions
from helpcast.infra.job_worker import BackgroundWorkerPool, PoolDispatchScheduler
from helpcast.infra.logging_config import setup_logging, get_logger
from helpcast.infra.metrics import AppMetrics, get_metrics_collector
from helpcast.infra.pg_category_repo_async import AsyncPostgresCategoryRepository
from helpcast.infra.pg_helper_pool_repo_async import AsyncPostgresHelperPoolRepository
from helpcast.infra.pg_notification_repo_async import AsyncPostgresNotificationRepository
from helpcast.infra.pg_profile_repo_async import (
    AsyncPostgresProfileRepository,
    AsyncPostgresSessionLookup,
)
from helpcast.infra.pg_request_repo_async import AsyncPostgresRequestRepository
from helpcast.infra.push_client import build_push_dispatcher
from helpcast.infra.recovery_sweep import DispatchRecoverySweeper
from helpcast.infra.s3_storage import get_s3_storage, is_s3_available
from helpcast.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
    SecurityHeadersMiddleware,
)
from helpcast.transport.schemas import (
    BroadcastCreatedOut,
    BroadcastRequestIn,
    BroadcastStatusOut,
)
from helpcast.transport.security import (
    check_configured_tokens,
    require_caller,
    require_metrics_auth,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_intake_handler(request: Request) -> RequestIntakeHandler:
    return request.app.state.intake


def get_request_store(request: Request) -> RequestStore:
    return request.app.state.requests


def get_health_checker(request: Request) -> AsyncHealthChecker:
    return request.app.state.health_checker


# ============================================================================
# WIRING
# ============================================================================

def build_dispatcher(requests: RequestStore) -> BroadcastDispatcher:
    """Assemble both background chains from settings."""
    timeout = settings.external_call_timeout_seconds

    uploader = None
    if is_s3_available():
        uploader = get_s3_storage()
    else:
        logger.warning("S3 storage not configured: inline media will not be migrated")

    push = build_push_dispatcher(settings.push_base_url)
    if push is None:
        logger.warning("PUSH_BASE_URL not configured: job alerts will not be pushed")

    return BroadcastDispatcher(
        eligibility=EligibilityFilter(
            AsyncPostgresHelperPoolRepository(),
            default_radius_km=settings.broadcast_default_radius_km,
            fallback_radius_km=settings.broadcast_fallback_radius_km,
            fallback_limit=settings.broadcast_fallback_limit,
        ),
        fanout=NotificationFanout(
            AsyncPostgresNotificationRepository(),
            push,
            countdown_seconds=settings.job_alert_countdown_seconds,
            call_timeout=timeout,
        ),
        sideloader=MediaSideloader(uploader, requests, call_timeout=timeout),
        requests=requests,
        call_timeout=timeout,
    )


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.is_production and settings.log_level.upper() == "DEBUG":
        logger.critical("LOG_LEVEL=DEBUG is not allowed in production")
        raise RuntimeError("LOG_LEVEL=DEBUG in production")

    check_configured_tokens()

    # Schema is not migrated here: python -m helpcast.infra.migrate
    await init_pool()
    logger.info("Database pool initialized")

    requests = AsyncPostgresRequestRepository()
    dispatcher = build_dispatcher(requests)

    worker_pool = BackgroundWorkerPool(
        size=settings.worker_pool_size,
        max_queue=settings.worker_queue_size,
        shutdown_grace=settings.worker_shutdown_grace_seconds,
    )
    worker_pool.register(DISPATCH_JOB, dispatcher.handle_dispatch_job)
    worker_pool.register(MEDIA_JOB, dispatcher.handle_media_job)
    await worker_pool.start()

    sweeper = None
    if settings.recovery_sweep_enabled:
        sweeper = DispatchRecoverySweeper(
            requests,
            worker_pool,
            interval=settings.recovery_sweep_interval_seconds,
            grace_seconds=settings.recovery_sweep_grace_seconds,
            batch_size=settings.recovery_sweep_batch_size,
        )
        await sweeper.start()
    else:
        logger.info("Dispatch recovery sweep disabled")

    health_checker = AsyncHealthChecker()
    health_checker.add_check(WorkerPoolHealthCheck(worker_pool))
    if is_s3_available():
        health_checker.add_check(StorageHealthCheck(get_s3_storage()))

    fastapi_app.state.requests = requests
    fastapi_app.state.session_lookup = AsyncPostgresSessionLookup()
    fastapi_app.state.worker_pool = worker_pool
    fastapi_app.state.health_checker = health_checker
    fastapi_app.state.intake = RequestIntakeHandler(
        categories=CategoryResolver(AsyncPostgresCategoryRepository()),
        requests=requests,
        profiles=AsyncPostgresProfileRepository(),
        scheduler=PoolDispatchScheduler(worker_pool),
        broadcast_expiry=timedelta(minutes=settings.broadcast_expiry_minutes),
    )

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    if sweeper is not None:
        await sweeper.stop()

    # Drains queued dispatch passes before the pool closes
    await worker_pool.stop()

    await close_all_sessions()
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Helpcast",
    description="Service request broadcast to nearby helpers",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(BroadcastError)
async def broadcast_error_handler(request: Request, exc: BroadcastError):
    """Domain errors carry their own status code and public message"""
    if exc.status_code >= 500:
        logger.error(
            f"Broadcast error: {exc.detail}",
            extra={"status_code": exc.status_code},
            exc_info=exc.__cause__ is not None,
        )

    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# PUBLIC ENDPOINTS (No authentication required)
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe. Returns minimal information."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness(health_checker: AsyncHealthChecker = Depends(get_health_checker)):
    """Readiness probe: critical checks only."""
    result = await health_checker.run_checks(include_non_critical=False)

    if result["status"] == "unhealthy":
        return JSONResponse(status_code=503, content={"status": "unhealthy"})

    return {"status": "healthy"}


# ============================================================================
# REQUEST BROADCAST
# ============================================================================

@app.post("/api/requests/broadcast", response_model=BroadcastCreatedOut)
async def create_broadcast(
    payload: BroadcastRequestIn,
    request: Request,
    caller_id: str = Depends(require_caller),
    intake: RequestIntakeHandler = Depends(get_intake_handler),
):
    """
    Create a service request and queue its broadcast.

    Returns as soon as the request is stored.  ``helpersNotified`` is
    always 0 here; the real count is available from the status endpoint
    once the dispatch pass has run.
    """
    result = await intake.create_broadcast(
        caller_id,
        payload.to_input(),
        http_request_id=getattr(request.state, "request_id", None),
    )
    return BroadcastCreatedOut(
        message=result.message,
        request_id=result.request_id,
        helpers_notified=result.helpers_notified,
    )


@app.get("/api/requests/{request_id}/broadcast-status", response_model=BroadcastStatusOut)
async def broadcast_status(
    request_id: str,
    caller_id: str = Depends(require_caller),
    requests: RequestStore = Depends(get_request_store),
):
    """Dispatch outcome for one of the caller's own requests."""
    view = await requests.get_status(request_id)
    if view is None or view.customer_id != caller_id:
        raise NotFoundError()

    return BroadcastStatusOut(
        request_id=view.request_id,
        dispatch_state=view.dispatch_state,
        helpers_notified=view.helpers_notified,
        broadcast_status=view.broadcast_status,
        broadcast_expires_at=view.broadcast_expires_at,
    )


# ============================================================================
# INTERNAL ENDPOINTS (METRICS_TOKEN)
# ============================================================================

@app.get("/health/detailed", dependencies=[Depends(require_metrics_auth)])
async def detailed_health(health_checker: AsyncHealthChecker = Depends(get_health_checker)):
    """All checks, including worker pool and dispatch backlog."""
    return await health_checker.run_checks(include_non_critical=True)


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics(request: Request):
    """In-process counters, gauges and histograms."""
    pool = getattr(request.app.state, "worker_pool", None)
    if pool is not None:
        AppMetrics.worker_queue(pool.pending, pool.running)
    return get_metrics_collector().get_metrics()
