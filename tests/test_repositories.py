# tests/test_repositories.py
"""
Tests for the asyncpg repositories.

The connection is mocked; assertions cover SQL shape, parameter
encoding and row mapping.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from helpcast.core.broadcast.domain import (
    BroadcastInput,
    BroadcastNotification,
    Category,
    DispatchState,
    Notification,
)
from helpcast.core.broadcast.intake import DEFAULT_REQUESTER_NAME, build_service_request
from helpcast.infra.metrics import get_metrics_collector
from helpcast.infra.pg_category_repo_async import AsyncPostgresCategoryRepository, _escape_like
from helpcast.infra.pg_helper_pool_repo_async import AsyncPostgresHelperPoolRepository
from helpcast.infra.pg_notification_repo_async import AsyncPostgresNotificationRepository
from helpcast.infra.pg_profile_repo_async import (
    AsyncPostgresProfileRepository,
    AsyncPostgresSessionLookup,
    hash_token,
)
from helpcast.infra.pg_request_repo_async import AsyncPostgresRequestRepository, _row_count

from tests.conftest import CENTER_LAT, CENTER_LON

REQUEST_ID = "11111111-2222-3333-4444-555555555555"


def _patch_conn(module: str, conn):
    """Patch ``safe_db_conn`` in ``module`` to yield ``conn``."""
    patcher = patch(f"helpcast.infra.{module}.safe_db_conn")
    mock_ctx = patcher.start()
    mock_ctx.return_value.__aenter__ = AsyncMock(return_value=conn)
    mock_ctx.return_value.__aexit__ = AsyncMock(return_value=False)
    return patcher


@pytest.fixture
def conn():
    return AsyncMock()


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class TestCategoryRepository:
    @pytest.mark.asyncio
    async def test_find_by_name_is_case_insensitive(self, conn):
        conn.fetchrow = AsyncMock(return_value={"id": "c1", "name": "Plumbing", "slug": "plumbing"})
        patcher = _patch_conn("pg_category_repo_async", conn)
        try:
            category = await AsyncPostgresCategoryRepository().find_by_name("PLUMBING")
        finally:
            patcher.stop()

        assert category == Category(id="c1", name="Plumbing", slug="plumbing")
        sql = conn.fetchrow.call_args[0][0]
        assert "lower(name) = lower($1)" in sql

    @pytest.mark.asyncio
    async def test_find_by_name_missing(self, conn):
        conn.fetchrow = AsyncMock(return_value=None)
        patcher = _patch_conn("pg_category_repo_async", conn)
        try:
            assert await AsyncPostgresCategoryRepository().find_by_name("nope") is None
        finally:
            patcher.stop()

    @pytest.mark.asyncio
    async def test_fragment_escapes_wildcards(self, conn):
        conn.fetchrow = AsyncMock(return_value=None)
        patcher = _patch_conn("pg_category_repo_async", conn)
        try:
            await AsyncPostgresCategoryRepository().find_by_name_fragment("100%_fix")
        finally:
            patcher.stop()

        assert "ILIKE" in conn.fetchrow.call_args[0][0]
        assert conn.fetchrow.call_args[0][1] == "100\\%\\_fix"

    def test_escape_like_backslash(self):
        assert _escape_like("a\\b") == "a\\\\b"

    @pytest.mark.asyncio
    async def test_create_returns_new_category(self, conn):
        conn.fetchrow = AsyncMock(return_value={"id": "c9", "name": "AC Repair", "slug": "ac-repair"})
        patcher = _patch_conn("pg_category_repo_async", conn)
        try:
            category = await AsyncPostgresCategoryRepository().create("AC Repair", "ac-repair")
        finally:
            patcher.stop()

        assert category.slug == "ac-repair"
        assert "INSERT INTO service_categories" in conn.fetchrow.call_args[0][0]


# ---------------------------------------------------------------------------
# Service requests
# ---------------------------------------------------------------------------

def _service_request():
    return build_service_request(
        request_id=REQUEST_ID,
        customer_id="customer-1",
        category=Category(id="cat-plumbing", name="Plumbing", slug="plumbing"),
        data=BroadcastInput(
            category_token="plumbing",
            address="12 MG Road",
            latitude=CENTER_LAT,
            longitude=CENTER_LON,
            images=["https://cdn.example.com/a.jpg"],
            estimated_price=499.5,
        ),
        now=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def _plan_row(**overrides):
    row = {
        "id": REQUEST_ID,
        "customer_id": "customer-1",
        "category_id": "cat-plumbing",
        "category_name": "Plumbing",
        "category_slug": "plumbing",
        "full_name": "  Asha  ",
        "latitude": CENTER_LAT,
        "longitude": CENTER_LON,
        "urgency_level": "urgent",
        "estimated_price": Decimal("499.50"),
        "address_line1": "12 MG Road",
        "description": "Leak",
        "images": '["https://cdn.example.com/a.jpg"]',
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    row.update(overrides)
    return row


class TestRequestRepository:
    @pytest.mark.asyncio
    async def test_create_passes_json_columns_and_pending_state(self, conn):
        conn.fetchrow = AsyncMock(return_value={"id": REQUEST_ID})
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            result = await AsyncPostgresRequestRepository().create(_service_request())
        finally:
            patcher.stop()

        assert result == REQUEST_ID
        args = conn.fetchrow.call_args[0]
        assert "INSERT INTO service_requests" in args[0]
        assert args[12] == ["https://cdn.example.com/a.jpg"]
        assert args[13] == Decimal("499.5")
        assert args[22] == "pending"
        assert args[21]["videos"] == []

    @pytest.mark.asyncio
    async def test_create_failure_counted_and_raised(self, conn):
        conn.fetchrow = AsyncMock(side_effect=RuntimeError("constraint"))
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            with pytest.raises(RuntimeError):
                await AsyncPostgresRequestRepository().create(_service_request())
        finally:
            patcher.stop()

        assert get_metrics_collector().get_counter("database_errors_total", operation="request_insert") == 1

    @pytest.mark.asyncio
    async def test_mark_dispatch_writes_state_and_count(self, conn):
        conn.execute = AsyncMock(return_value="UPDATE 1")
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            await AsyncPostgresRequestRepository().mark_dispatch(REQUEST_ID, DispatchState.DISPATCHED, 4)
        finally:
            patcher.stop()

        args = conn.execute.call_args[0]
        assert "SET dispatch_state = $2, helpers_notified = $3" in args[0]
        assert args[1:] == (REQUEST_ID, "dispatched", 4)

    @pytest.mark.asyncio
    async def test_update_images_replaces_list(self, conn):
        conn.execute = AsyncMock(return_value="UPDATE 1")
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            await AsyncPostgresRequestRepository().update_images(REQUEST_ID, ["https://x/1.png"])
        finally:
            patcher.stop()

        assert conn.execute.call_args[0][2] == ["https://x/1.png"]

    @pytest.mark.asyncio
    async def test_claim_stale_pending_maps_rows(self, conn):
        conn.fetch = AsyncMock(return_value=[_plan_row(), _plan_row(full_name=None)])
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            plans = await AsyncPostgresRequestRepository().claim_stale_pending(300, 10)
        finally:
            patcher.stop()

        sql, grace, limit = conn.fetch.call_args[0]
        assert "FOR UPDATE SKIP LOCKED" in sql
        assert "dispatch_replays = 0" in sql
        assert (grace, limit) == (300.0, 10)

        first, second = plans
        assert first.requester_name == "Asha"
        assert second.requester_name == DEFAULT_REQUESTER_NAME
        assert first.category == Category(id="cat-plumbing", name="Plumbing", slug="plumbing")
        assert first.estimated_price == 499.5
        assert first.images == ["https://cdn.example.com/a.jpg"]

    @pytest.mark.asyncio
    async def test_get_status_rejects_malformed_id_without_query(self, conn):
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            assert await AsyncPostgresRequestRepository().get_status("not-a-uuid") is None
        finally:
            patcher.stop()

        conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_status_view(self, conn):
        expires = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=30)
        conn.fetchrow = AsyncMock(return_value={
            "id": REQUEST_ID,
            "customer_id": "customer-1",
            "dispatch_state": "dispatched",
            "helpers_notified": 3,
            "broadcast_status": "broadcasting",
            "broadcast_expires_at": expires,
        })
        patcher = _patch_conn("pg_request_repo_async", conn)
        try:
            view = await AsyncPostgresRequestRepository().get_status(REQUEST_ID)
        finally:
            patcher.stop()

        assert view.customer_id == "customer-1"
        assert view.helpers_notified == 3
        assert view.broadcast_expires_at == expires

    @pytest.mark.parametrize("result,expected", [
        ("UPDATE 1", 1),
        ("UPDATE 0", 0),
        ("", 0),
        (None, 0),
        ("garbage", 0),
    ])
    def test_row_count(self, result, expected):
        assert _row_count(result) == expected


# ---------------------------------------------------------------------------
# Helper pool
# ---------------------------------------------------------------------------

def _helper_row(**overrides):
    row = {
        "id": "h1",
        "user_id": "u1",
        "full_name": "Ravi",
        "service_categories": ["plumbing"],
        "service_radius_km": 10.0,
        "current_location_lat": CENTER_LAT,
        "current_location_lng": CENTER_LON,
        "is_online": True,
        "is_on_job": False,
    }
    row.update(overrides)
    return row


class TestHelperPoolRepository:
    @pytest.mark.asyncio
    async def test_bounded_query_uses_bounding_box(self, conn):
        conn.fetch = AsyncMock(return_value=[_helper_row()])
        patcher = _patch_conn("pg_helper_pool_repo_async", conn)
        try:
            helpers = await AsyncPostgresHelperPoolRepository().load_available(CENTER_LAT, CENTER_LON, 25.0)
        finally:
            patcher.stop()

        args = conn.fetch.call_args[0]
        assert "BETWEEN $1 AND $2" in args[0]
        min_lat, max_lat, min_lon, max_lon = args[1:]
        assert min_lat < CENTER_LAT < max_lat
        assert min_lon < CENTER_LON < max_lon
        assert helpers[0].service_categories == ("plumbing",)
        assert helpers[0].display_name == "Ravi"

    @pytest.mark.asyncio
    async def test_unbounded_query_without_coordinates(self, conn):
        conn.fetch = AsyncMock(return_value=[_helper_row(service_categories=None)])
        patcher = _patch_conn("pg_helper_pool_repo_async", conn)
        try:
            helpers = await AsyncPostgresHelperPoolRepository().load_available()
        finally:
            patcher.stop()

        args = conn.fetch.call_args[0]
        assert len(args) == 1
        assert "BETWEEN" not in args[0]
        assert "verification_status = 'approved'" in args[0]
        assert helpers[0].service_categories == ()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class TestNotificationRepository:
    @pytest.mark.asyncio
    async def test_empty_batches_skip_database(self, conn):
        patcher = _patch_conn("pg_notification_repo_async", conn)
        try:
            repo = AsyncPostgresNotificationRepository()
            assert await repo.insert_broadcasts([]) == 0
            assert await repo.insert_notifications([]) == 0
        finally:
            patcher.stop()

        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_broadcasts_single_statement(self, conn):
        sent_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        rows = [
            BroadcastNotification(request_id=REQUEST_ID, helper_id="h1", distance_km=1.234, sent_at=sent_at),
            BroadcastNotification(request_id=REQUEST_ID, helper_id="h2", distance_km=7.0, sent_at=sent_at),
        ]
        patcher = _patch_conn("pg_notification_repo_async", conn)
        try:
            count = await AsyncPostgresNotificationRepository().insert_broadcasts(rows)
        finally:
            patcher.stop()

        assert count == 2
        conn.execute.assert_called_once()
        args = conn.execute.call_args[0]
        assert "unnest" in args[0]
        assert args[2] == ["h1", "h2"]
        assert args[4] == [Decimal("1.23"), Decimal("7.00")]

    @pytest.mark.asyncio
    async def test_notifications_encode_data(self, conn):
        rows = [Notification(user_id="u1", request_id=REQUEST_ID, title="New job", body="Plumbing", data={"k": 1})]
        patcher = _patch_conn("pg_notification_repo_async", conn)
        try:
            await AsyncPostgresNotificationRepository().insert_notifications(rows)
        finally:
            patcher.stop()

        args = conn.execute.call_args[0]
        assert json.loads(args[6][0]) == {"k": 1}
        assert args[7] == ["queued"]

    @pytest.mark.asyncio
    async def test_failure_counted_and_raised(self, conn):
        conn.execute = AsyncMock(side_effect=ConnectionError("down"))
        rows = [Notification(user_id="u1", request_id=REQUEST_ID, title="t", body="b")]
        patcher = _patch_conn("pg_notification_repo_async", conn)
        try:
            with pytest.raises(ConnectionError):
                await AsyncPostgresNotificationRepository().insert_notifications(rows)
        finally:
            patcher.stop()

        assert get_metrics_collector().get_counter("database_errors_total", operation="notification_insert") == 1


# ---------------------------------------------------------------------------
# Profiles and sessions
# ---------------------------------------------------------------------------

class TestProfileRepository:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("row,expected", [
        ({"full_name": " Asha "}, "Asha"),
        ({"full_name": "   "}, None),
        ({"full_name": None}, None),
        (None, None),
    ])
    async def test_display_name(self, conn, row, expected):
        conn.fetchrow = AsyncMock(return_value=row)
        patcher = _patch_conn("pg_profile_repo_async", conn)
        try:
            assert await AsyncPostgresProfileRepository().get_display_name("customer-1") == expected
        finally:
            patcher.stop()


class TestSessionLookup:
    def test_hash_token_is_sha256_hex(self):
        assert hash_token("abc") == hashlib.sha256(b"abc").hexdigest()

    @pytest.mark.asyncio
    async def test_known_token(self, conn):
        conn.fetchrow = AsyncMock(return_value={"user_id": "customer-1"})
        patcher = _patch_conn("pg_profile_repo_async", conn)
        try:
            user_id = await AsyncPostgresSessionLookup().user_for_token("secret-token")
        finally:
            patcher.stop()

        assert user_id == "customer-1"
        sql, token_hash = conn.fetchrow.call_args[0]
        assert "expires_at > now()" in sql
        assert token_hash == hash_token("secret-token")

    @pytest.mark.asyncio
    async def test_empty_token_skips_query(self, conn):
        patcher = _patch_conn("pg_profile_repo_async", conn)
        try:
            assert await AsyncPostgresSessionLookup().user_for_token("") is None
        finally:
            patcher.stop()

        conn.fetchrow.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_token(self, conn):
        conn.fetchrow = AsyncMock(return_value=None)
        patcher = _patch_conn("pg_profile_repo_async", conn)
        try:
            assert await AsyncPostgresSessionLookup().user_for_token("expired") is None
        finally:
            patcher.stop()
