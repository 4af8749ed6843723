# helpcast/infra/pg_notification_repo_async.py
"""
Batch writers for broadcast audit rows and notification records.
Each call is one multi-row statement; it either writes all rows or none.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Sequence

from helpcast.core.broadcast.domain import BroadcastNotification, Notification
from helpcast.infra.db_resilience_async import safe_db_conn
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics

logger = get_logger(__name__)


class AsyncPostgresNotificationRepository:
    async def insert_broadcasts(self, rows: Sequence[BroadcastNotification]) -> int:
        if not rows:
            return 0
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO broadcast_notifications (request_id, helper_id, status, distance_km, sent_at)
                    SELECT * FROM unnest($1::uuid[], $2::uuid[], $3::text[], $4::numeric[], $5::timestamptz[])
                    """,
                    [r.request_id for r in rows],
                    [r.helper_id for r in rows],
                    [r.status for r in rows],
                    [Decimal(f"{r.distance_km:.2f}") for r in rows],
                    [r.sent_at for r in rows],
                )
        except Exception:
            logger.error(f"Failed to insert {len(rows)} broadcast notification(s)", exc_info=True)
            AppMetrics.database_error("broadcast_insert")
            raise
        return len(rows)

    async def insert_notifications(self, rows: Sequence[Notification]) -> int:
        if not rows:
            return 0
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO notifications (user_id, request_id, channel, title, body, data, status)
                    SELECT u, r, c, t, b, d::jsonb, s
                    FROM unnest($1::uuid[], $2::uuid[], $3::text[], $4::text[], $5::text[], $6::text[], $7::text[])
                      AS x(u, r, c, t, b, d, s)
                    """,
                    [r.user_id for r in rows],
                    [r.request_id for r in rows],
                    [r.channel for r in rows],
                    [r.title for r in rows],
                    [r.body for r in rows],
                    [json.dumps(r.data, default=str) for r in rows],
                    [r.status for r in rows],
                )
        except Exception:
            logger.error(f"Failed to insert {len(rows)} notification(s)", exc_info=True)
            AppMetrics.database_error("notification_insert")
            raise
        return len(rows)
