# helpcast/infra/pg_request_repo_async.py
"""
Async PostgreSQL service-request repository (asyncpg).

Besides the intake insert, this owns the dispatch-pending marker:
``dispatch_state`` starts as 'pending' and is settled by the dispatch pass.
Rows left pending are claimed by the recovery sweep, at most once each.
"""
from __future__ import annotations

import json
import uuid
from decimal import Decimal
from typing import Optional

from helpcast.core.broadcast.domain import (
    BroadcastStatusView,
    Category,
    DispatchPlan,
    DispatchState,
    ServiceRequest,
)
from helpcast.core.broadcast.intake import DEFAULT_REQUESTER_NAME
from helpcast.infra.db_resilience_async import retry_on_transient_error, safe_db_conn
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics

logger = get_logger(__name__)


def _to_numeric(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _to_float(value) -> Optional[float]:
    return None if value is None else float(value)


def _load_json(value, default):
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_count(result: str) -> int:
    # asyncpg returns a status string like "UPDATE 1"
    if not result:
        return 0
    try:
        return int(result.split()[-1])
    except ValueError:
        return 0


def _row_to_plan(row) -> DispatchPlan:
    return DispatchPlan(
        request_id=str(row["id"]),
        requester_id=str(row["customer_id"]),
        requester_name=(row["full_name"] or "").strip() or DEFAULT_REQUESTER_NAME,
        category=Category(id=str(row["category_id"]), name=row["category_name"], slug=row["category_slug"]),
        latitude=row["latitude"],
        longitude=row["longitude"],
        urgency=row["urgency_level"],
        estimated_price=_to_float(row["estimated_price"]),
        address=row["address_line1"],
        description=row["description"],
        images=list(_load_json(row["images"], [])),
    )


class AsyncPostgresRequestRepository:
    async def create(self, request: ServiceRequest) -> str:
        """Insert a new request in dispatch state 'pending'. Returns its id."""
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    """
                    INSERT INTO service_requests (
                      id, customer_id, category_id, title, description,
                      address_line1, address_line2, landmark, service_address,
                      latitude, longitude, images, estimated_price, urgency_level,
                      status, broadcast_status, payment_method, start_otp, end_otp,
                      broadcast_expires_at, service_type_details, dispatch_state, created_at
                    )
                    VALUES (
                      $1, $2, $3, $4, $5,
                      $6, $7, $8, $9,
                      $10, $11, $12::jsonb, $13, $14,
                      $15, $16, $17, $18, $19,
                      $20, $21::jsonb, $22, $23
                    )
                    RETURNING id
                    """,
                    request.id,
                    request.customer_id,
                    request.category_id,
                    request.title,
                    request.description,
                    request.address_line1,
                    request.address_line2,
                    request.landmark,
                    request.service_address,
                    request.latitude,
                    request.longitude,
                    list(request.images),
                    _to_numeric(request.estimated_price),
                    request.urgency_level.value,
                    request.status.value,
                    request.broadcast_status.value,
                    request.payment_method,
                    request.start_code,
                    request.end_code,
                    request.broadcast_expires_at,
                    request.service_type_details,
                    request.dispatch_state.value,
                    request.created_at,
                )
                return str(row["id"])
        except Exception:
            logger.error(f"Failed to insert service request: id={request.id[:8]}", exc_info=True)
            AppMetrics.database_error("request_insert")
            raise

    async def update_images(self, request_id: str, images: list[str]) -> None:
        async with safe_db_conn() as conn:
            result = await conn.execute(
                """
                UPDATE service_requests
                SET images = $2::jsonb, updated_at = now()
                WHERE id = $1
                """,
                request_id,
                list(images),
            )
            if _row_count(result) == 0:
                logger.warning(f"Image update matched no request: id={request_id[:8]}")

    async def mark_dispatch(self, request_id: str, state: DispatchState, helpers_notified: int) -> None:
        async with safe_db_conn() as conn:
            result = await conn.execute(
                """
                UPDATE service_requests
                SET dispatch_state = $2, helpers_notified = $3, updated_at = now()
                WHERE id = $1
                """,
                request_id,
                state.value,
                helpers_notified,
            )
            if _row_count(result) == 0:
                logger.warning(f"Dispatch mark matched no request: id={request_id[:8]}")

    async def claim_stale_pending(self, older_than_seconds: int, limit: int) -> list[DispatchPlan]:
        """
        Claim requests whose dispatch pass never settled.

        Only rows that have not been replayed yet are eligible; claiming
        consumes the replay, so a request is re-dispatched at most once.
        Uses FOR UPDATE SKIP LOCKED so concurrent sweepers never share a row.
        """
        async with safe_db_conn() as conn:
            rows = await conn.fetch(
                """
                WITH stale AS (
                    SELECT id FROM service_requests
                    WHERE dispatch_state = 'pending'
                      AND dispatch_replays = 0
                      AND created_at < now() - make_interval(secs => $1)
                    ORDER BY created_at
                    LIMIT $2
                    FOR UPDATE SKIP LOCKED
                ),
                claimed AS (
                    UPDATE service_requests sr
                    SET dispatch_replays = sr.dispatch_replays + 1, updated_at = now()
                    FROM stale
                    WHERE sr.id = stale.id
                    RETURNING sr.id, sr.customer_id, sr.category_id, sr.latitude, sr.longitude,
                              sr.urgency_level, sr.estimated_price, sr.address_line1,
                              sr.description, sr.images, sr.created_at
                )
                SELECT claimed.*, c.name AS category_name, c.slug AS category_slug, p.full_name
                FROM claimed
                JOIN service_categories c ON c.id = claimed.category_id
                LEFT JOIN profiles p ON p.id = claimed.customer_id
                ORDER BY claimed.created_at
                """,
                float(older_than_seconds),
                limit,
            )
            return [_row_to_plan(row) for row in rows]

    @retry_on_transient_error(max_retries=2)
    async def get_status(self, request_id: str) -> Optional[BroadcastStatusView]:
        try:
            uuid.UUID(request_id)
        except ValueError:
            return None

        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, customer_id, dispatch_state, helpers_notified,
                       broadcast_status, broadcast_expires_at
                FROM service_requests
                WHERE id = $1
                """,
                request_id,
            )
            if not row:
                return None
            return BroadcastStatusView(
                request_id=str(row["id"]),
                customer_id=str(row["customer_id"]),
                dispatch_state=row["dispatch_state"],
                helpers_notified=row["helpers_notified"],
                broadcast_status=row["broadcast_status"],
                broadcast_expires_at=row["broadcast_expires_at"],
            )
