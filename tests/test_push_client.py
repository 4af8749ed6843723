# tests/test_push_client.py
"""Tests for the push-delivery client (helpcast/infra/push_client.py)"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from helpcast.core.broadcast.domain import JobAlert
from helpcast.infra.push_client import (
    HttpPushDispatcher,
    PushDeliveryError,
    build_push_dispatcher,
    job_alert_body,
)


def _alert() -> JobAlert:
    return JobAlert(
        helper_user_ids=["user-1", "user-2"],
        request_id="req-1",
        title="New Plumbing Job",
        description="Kitchen sink is leaking",
        price=499.0,
        location="12 MG Road",
        customer_name="Asha",
        urgency="urgent",
    )


def _make_mock_response(status=200, json_data=None, text=""):
    """Create a mock aiohttp response."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data or {})
    resp.text = AsyncMock(return_value=text)
    return resp


def _make_mock_session(response):
    """Create a mock session whose .post() returns the given response."""
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post = MagicMock(return_value=ctx)
    return session


class TestJobAlertBody:
    def test_camel_case_fields(self):
        body = job_alert_body(_alert())

        assert body == {
            "helperUserIds": ["user-1", "user-2"],
            "jobId": "req-1",
            "title": "New Plumbing Job",
            "description": "Kitchen sink is leaking",
            "price": 499.0,
            "location": "12 MG Road",
            "customerName": "Asha",
            "urgency": "urgent",
            "expiresInSeconds": 30,
        }


class TestBuildPushDispatcher:
    @pytest.mark.parametrize("base_url", [None, ""])
    def test_disabled_without_base_url(self, base_url):
        assert build_push_dispatcher(base_url) is None

    def test_enabled(self):
        assert isinstance(build_push_dispatcher("https://push.example.com"), HttpPushDispatcher)


class TestSendJobAlert:
    @pytest.mark.asyncio
    async def test_posts_to_job_alert_path(self):
        session = _make_mock_session(_make_mock_response(200, {"sent": 2}))
        dispatcher = HttpPushDispatcher("https://push.example.com/", session_factory=lambda: session)

        result = await dispatcher.send_job_alert(_alert())

        assert result == {"sent": 2}
        url = session.post.call_args[0][0]
        assert url == "https://push.example.com/api/push/job-alert"
        assert session.post.call_args[1]["json"]["jobId"] == "req-1"

    @pytest.mark.asyncio
    async def test_non_json_body_returns_empty(self):
        resp = _make_mock_response(204)
        resp.json = AsyncMock(side_effect=ValueError("no body"))
        dispatcher = HttpPushDispatcher("https://push.example.com", session_factory=lambda: _make_mock_session(resp))

        assert await dispatcher.send_job_alert(_alert()) == {}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        session = _make_mock_session(_make_mock_response(503, text="unavailable"))
        dispatcher = HttpPushDispatcher("https://push.example.com", session_factory=lambda: session)

        with pytest.raises(PushDeliveryError) as exc_info:
            await dispatcher.send_job_alert(_alert())

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        session = MagicMock()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        dispatcher = HttpPushDispatcher("https://push.example.com", session_factory=lambda: session)

        with pytest.raises(PushDeliveryError) as exc_info:
            await dispatcher.send_job_alert(_alert())

        assert exc_info.value.status is None


class TestSessions:
    @pytest.mark.asyncio
    async def test_session_reused_until_closed(self):
        from helpcast.infra import http_client

        first = http_client.get_push_session()
        try:
            assert http_client.get_push_session() is first
        finally:
            await http_client.close_all_sessions()

        assert first.closed
        second = http_client.get_push_session()
        try:
            assert second is not first
        finally:
            await http_client.close_all_sessions()

    def test_unknown_profile(self):
        from helpcast.infra import http_client

        with pytest.raises(KeyError):
            http_client.get_session("nope")
