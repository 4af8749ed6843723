# helpcast/core/broadcast/ports.py
from __future__ import annotations
from typing import Any, Optional, Protocol, Sequence

from helpcast.core.broadcast.domain import (
    BroadcastNotification,
    BroadcastStatusView,
    Category,
    DispatchPlan,
    DispatchState,
    HelperCandidate,
    JobAlert,
    Notification,
    ServiceRequest,
)


# ============================================================================
# ASYNC PROTOCOLS (asyncpg / aiohttp / boto3 implementations live in infra)
# ============================================================================

class CategoryStore(Protocol):
    async def find_by_name(self, name: str) -> Optional[Category]:
        """Case-insensitive exact match on the canonical name."""
        ...

    async def find_by_name_fragment(self, fragment: str) -> Optional[Category]:
        """Case-insensitive containment match on the canonical name."""
        ...

    async def find_any(self) -> Optional[Category]: ...

    async def create(self, name: str, slug: str) -> Category: ...


class ProfileReader(Protocol):
    async def get_display_name(self, user_id: str) -> Optional[str]: ...


class RequestStore(Protocol):
    async def create(self, request: ServiceRequest) -> str: ...

    async def update_images(self, request_id: str, images: list[str]) -> None:
        """Targeted update of the media column only."""
        ...

    async def mark_dispatch(
        self, request_id: str, state: DispatchState, helpers_notified: int
    ) -> None: ...

    async def claim_stale_pending(
        self, older_than_seconds: int, limit: int
    ) -> list[DispatchPlan]:
        """Select lost dispatch passes and consume their single replay."""
        ...

    async def get_status(self, request_id: str) -> Optional[BroadcastStatusView]: ...


class HelperPoolReader(Protocol):
    async def load_available(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> list[HelperCandidate]:
        """
        Approved, verified, online, not-on-job helpers.

        When a centre and radius are given the query may be bounded to the
        enclosing bounding box; exact distance is still decided by the caller.
        """
        ...


class NotificationWriter(Protocol):
    async def insert_broadcasts(self, rows: Sequence[BroadcastNotification]) -> int: ...

    async def insert_notifications(self, rows: Sequence[Notification]) -> int: ...


class PushDispatcher(Protocol):
    async def send_job_alert(self, alert: JobAlert) -> dict[str, Any]: ...


class MediaUploader(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under ``key`` and return a public URL."""
        ...


class DispatchScheduler(Protocol):
    def schedule_dispatch(self, plan: DispatchPlan) -> None:
        """Queue the dispatch pass; must not wait for it."""
        ...

    def schedule_media_sideload(self, plan: DispatchPlan) -> None: ...
