# helpcast/transport/security.py
"""
Security utilities for the public API.

- Caller authentication (bearer session token -> user id)
- Metrics endpoint protection (constant-time token comparison)
- Token strength warnings at startup
- Security headers and error message sanitization
"""
import hmac
from typing import Optional

import asyncpg
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpcast.config import settings
from helpcast.core.broadcast.errors import AuthenticationError
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

MIN_TOKEN_LENGTH = 32
WEAK_TOKEN_PATTERNS = [
    "password", "secret", "token", "admin", "test", "demo",
    "123456", "000000", "111111", "aaaaaa",
]

caller_bearer_scheme = HTTPBearer(
    scheme_name="Session Token",
    description="Session token issued at sign-in (without 'Bearer ' prefix)",
    auto_error=False,
)

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="Enter your metrics token (without 'Bearer ' prefix)",
    auto_error=False,
)


def validate_token_strength(token: str, token_name: str = "token") -> list[str]:
    """
    Validate that a token meets minimum security requirements.
    Returns list of warnings (empty if token is strong).
    """
    warnings = []

    if len(token) < MIN_TOKEN_LENGTH:
        warnings.append(
            f"{token_name} is too short ({len(token)} chars). "
            f"Minimum recommended: {MIN_TOKEN_LENGTH} chars"
        )

    token_lower = token.lower()
    for pattern in WEAK_TOKEN_PATTERNS:
        if pattern in token_lower:
            warnings.append(
                f"{token_name} contains weak pattern '{pattern}'. "
                "Use a cryptographically random token"
            )
            break

    return warnings


def check_configured_tokens():
    """Log warnings for weak configured tokens. Call from app startup."""
    if settings.metrics_token:
        for warning in validate_token_strength(settings.metrics_token, "METRICS_TOKEN"):
            logger.warning(f"SECURITY: {warning}")


async def require_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(caller_bearer_scheme),
) -> str:
    """
    Dependency resolving the authenticated caller's user id.

    The session itself is owned by the account service; we only look the
    token up.  Raises AuthenticationError (401) when the token is missing,
    unknown or expired.
    """
    if not credentials or not credentials.credentials:
        raise AuthenticationError()

    lookup = request.app.state.session_lookup
    user_id = await lookup.user_for_token(credentials.credentials)
    if not user_id:
        logger.info("Rejected request with unknown or expired session token")
        raise AuthenticationError()

    request.state.user_id = user_id
    return user_id


def require_metrics_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(metrics_bearer_scheme),
):
    """
    Dependency for metrics/monitoring endpoints.

    - METRICS_TOKEN set: require matching Bearer token
    - METRICS_TOKEN unset: open in dev, forbidden in staging/prod

    Usage:
        @app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
    """
    if settings.metrics_token:
        if not credentials:
            logger.warning("Metrics endpoint accessed without token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
            logger.warning("Invalid metrics token attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return

    if settings.is_production or settings.is_staging:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS_HEADER = "max-age=31536000; includeSubDomains"


def apply_security_headers(response: Response) -> Response:
    """Stamp the JSON-API header set onto ``response``; HSTS only outside dev."""
    response.headers.update(SECURITY_HEADERS)
    response.headers.setdefault("Cache-Control", "no-store")
    if settings.is_production or settings.is_staging:
        response.headers["Strict-Transport-Security"] = HSTS_HEADER
    if "Server" in response.headers:
        del response.headers["Server"]
    return response


# First match wins, so subclasses go before their bases
_PUBLIC_ERROR_MESSAGES: tuple[tuple[type[BaseException], str], ...] = (
    (asyncpg.PostgresError, "Service temporarily unavailable"),
    (TimeoutError, "Request timeout"),
    (ConnectionError, "Service temporarily unavailable"),
    (ValueError, "Invalid input"),
    (KeyError, "Invalid request"),
)


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """Full message in dev; a fixed, class-based message in production."""
    if not is_production:
        return str(error)
    for error_type, message in _PUBLIC_ERROR_MESSAGES:
        if isinstance(error, error_type):
            return message
    return "Internal server error"
