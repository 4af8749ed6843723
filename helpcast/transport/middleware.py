# helpcast/transport/middleware.py
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from helpcast.config import settings
from helpcast.infra.logging_config import LogContext, get_logger
from helpcast.infra.metrics import observe_histogram
from helpcast.transport.security import apply_security_headers, sanitize_error_message

logger = get_logger(__name__)

# Load-balancer probes, not logged
QUIET_PATHS = frozenset({"/health", "/ready"})

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one; echoed on the response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line and one latency sample per API call"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in QUIET_PATHS:
            return await call_next(request)

        log = LogContext(logger, request_id=_request_id(request))
        fields = {"method": request.method, "path": request.url.path}
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            log.error(
                f"{request.method} {request.url.path} raised {exc.__class__.__name__}",
                extra=fields,
                exc_info=True,
            )
            raise

        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        fields["status_code"] = response.status_code
        observe_histogram("http_request_duration_ms", fields["duration_ms"], method=request.method)
        log.info(
            f"{request.method} {request.url.path} -> {response.status_code} in {fields['duration_ms']}ms",
            extra=fields,
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last-resort JSON 500 for exceptions no route handler caught"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            logger.error(
                f"Unhandled {exc.__class__.__name__}: {exc}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": sanitize_error_message(exc, settings.is_production),
                    "request_id": request_id,
                },
            )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        return apply_security_headers(await call_next(request))
