# helpcast/infra/pg_profile_repo_async.py
"""
Read-only access to user profiles and login sessions owned by the
account service.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from helpcast.infra.db_resilience_async import retry_on_transient_error, safe_db_conn
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics

logger = get_logger(__name__)


def hash_token(token: str) -> str:
    """Session tokens are stored as hex SHA-256 digests, never in clear."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AsyncPostgresProfileRepository:
    @retry_on_transient_error(max_retries=2)
    async def get_display_name(self, user_id: str) -> Optional[str]:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow("SELECT full_name FROM profiles WHERE id = $1", user_id)
            if not row:
                return None
            name = (row["full_name"] or "").strip()
            return name or None


class AsyncPostgresSessionLookup:
    """Resolves a bearer token to its user id, or None when unknown or expired."""

    async def user_for_token(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT user_id FROM auth_sessions
                    WHERE token_hash = $1 AND expires_at > now()
                    """,
                    hash_token(token),
                )
        except Exception:
            logger.error("Session lookup failed", exc_info=True)
            AppMetrics.database_error("session_lookup")
            raise
        return str(row["user_id"]) if row else None
