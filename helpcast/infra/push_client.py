# helpcast/infra/push_client.py
"""
Client for the push-delivery service.

One job alert per dispatch pass covers every selected helper.  The
service owns device tokens and the countdown UI; we only hand it the
alert payload.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import aiohttp

from helpcast.core.broadcast.domain import JobAlert
from helpcast.infra.http_client import get_push_session
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

JOB_ALERT_PATH = "/api/push/job-alert"


class PushDeliveryError(Exception):
    """Push service rejected the alert or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def job_alert_body(alert: JobAlert) -> dict[str, Any]:
    return {
        "helperUserIds": list(alert.helper_user_ids),
        "jobId": alert.request_id,
        "title": alert.title,
        "description": alert.description,
        "price": alert.price,
        "location": alert.location,
        "customerName": alert.customer_name,
        "urgency": alert.urgency,
        "expiresInSeconds": alert.expires_in_seconds,
    }


class HttpPushDispatcher:
    def __init__(
        self,
        base_url: str,
        *,
        session_factory: Callable[[], aiohttp.ClientSession] = get_push_session,
    ):
        self._url = base_url.rstrip("/") + JOB_ALERT_PATH
        self._session_factory = session_factory

    async def send_job_alert(self, alert: JobAlert) -> dict[str, Any]:
        """
        POST the alert to the push service.

        Returns:
            Decoded JSON response (empty dict when the body is not JSON)

        Raises:
            PushDeliveryError: non-2xx response or transport failure
        """
        session = self._session_factory()
        try:
            async with session.post(self._url, json=job_alert_body(alert)) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise PushDeliveryError(
                        f"push service returned {resp.status}: {text[:200]}",
                        status=resp.status,
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    logger.debug("Push service returned non-JSON body")
                    return {}
        except aiohttp.ClientError as exc:
            raise PushDeliveryError(f"push service unreachable: {exc}") from exc


def build_push_dispatcher(base_url: Optional[str]) -> Optional[HttpPushDispatcher]:
    """Dispatcher for the configured service, or None when push is disabled."""
    if not base_url:
        return None
    return HttpPushDispatcher(base_url)
